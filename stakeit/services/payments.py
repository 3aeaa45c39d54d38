"""Payment gateway collaborators."""

import uuid
from abc import ABC, abstractmethod

import httpx

from stakeit.config import get_settings
from stakeit.errors import UpstreamFailure
from stakeit.logging_config import get_logger
from stakeit.models.payment import ChargeResult

logger = get_logger(__name__)


class PaymentGateway(ABC):
    """Creates charges; completion arrives later through the webhook."""

    @abstractmethod
    async def create_charge(
        self, amount: int, goal_id: str, user_id: str, description: str
    ) -> ChargeResult: ...


class OmisePromptPayGateway(PaymentGateway):
    """PromptPay QR charges through the Omise REST API."""

    def __init__(self, api_url: str, secret_key: str, currency: str = "thb"):
        self._api_url = api_url.rstrip("/")
        self._secret_key = secret_key
        self._currency = currency

    async def create_charge(
        self, amount: int, goal_id: str, user_id: str, description: str
    ) -> ChargeResult:
        # Omise amounts are in the smallest unit (satang)
        minor_amount = amount * 100
        auth = (self._secret_key, "")

        try:
            async with httpx.AsyncClient(auth=auth, timeout=15.0) as client:
                source = await client.post(f"{self._api_url}/sources", data={
                    "type": "promptpay",
                    "amount": minor_amount,
                    "currency": self._currency,
                })
                source.raise_for_status()

                charge = await client.post(f"{self._api_url}/charges", data={
                    "amount": minor_amount,
                    "currency": self._currency,
                    "source": source.json()["id"],
                    "description": description,
                    "metadata[goal_id]": goal_id,
                    "metadata[user_id]": user_id,
                })
                charge.raise_for_status()
                body = charge.json()
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("charge_creation_failed", goal_id=goal_id, error=str(e))
            raise UpstreamFailure("Payment gateway unavailable") from e

        qr_code_url = (
            ((body.get("source") or {}).get("scannable_code") or {})
            .get("image", {})
            .get("download_uri", "")
        )
        return ChargeResult(charge_id=body["id"], qr_code_url=qr_code_url, amount=amount)


class DevPaymentGateway(PaymentGateway):
    """Issues fake charges; activate goals via a simulated webhook."""

    async def create_charge(
        self, amount: int, goal_id: str, user_id: str, description: str
    ) -> ChargeResult:
        charge_id = f"chrg_dev_{uuid.uuid4().hex[:16]}"
        logger.info("dev_charge_created", goal_id=goal_id, charge_id=charge_id, amount=amount)
        return ChargeResult(charge_id=charge_id, qr_code_url="", amount=amount)


def get_payment_gateway() -> PaymentGateway:
    """Gateway for the configured environment."""
    settings = get_settings()
    if settings.payment_secret_key:
        return OmisePromptPayGateway(
            settings.payment_api_url,
            settings.payment_secret_key,
            settings.payment_currency,
        )
    return DevPaymentGateway()
