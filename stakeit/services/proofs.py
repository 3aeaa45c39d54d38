"""Proof providers and verifier collaborators for automatic goals."""

import json
import uuid
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlencode

import httpx

from stakeit.config import get_settings
from stakeit.logging_config import get_logger
from stakeit.models.verification import ProofPayload, ProofVerdict, Provider

logger = get_logger(__name__)


PROVIDERS: dict[str, Provider] = {
    "duolingo_xp": Provider(
        id="7109889c",
        name="Duolingo - Verify totalXp",
        goal_keywords=[
            "duolingo", "language", "spanish", "french", "thai",
            "japanese", "korean", "german", "learn", "streak",
        ],
        extracted_field="totalXp",
        default_threshold=100,
    ),
    "duolingo_language": Provider(
        id="04075047",
        name="Duolingo - Verify xp for language",
        goal_keywords=["duolingo spanish", "duolingo french", "duolingo thai"],
        extracted_field="xp",
    ),
    "github_contributions": Provider(
        id="91d9a218",
        name="GitHub - contributions",
        goal_keywords=["github", "code", "commit", "programming", "coding", "opensource"],
        extracted_field="contributions",
        default_threshold=5,
    ),
    "leetcode": Provider(
        id="e9e195f9",
        name="LeetCode Reputation",
        goal_keywords=["leetcode", "algorithm", "coding challenge", "dsa"],
        extracted_field="reputation",
    ),
}


def find_provider_for_goal(goal_name: str) -> Optional[Provider]:
    """First registered provider with a keyword contained in the goal name."""
    lowered = goal_name.lower()
    for provider in PROVIDERS.values():
        for keyword in provider.goal_keywords:
            if keyword.lower() in lowered:
                return provider
    return None


def first_extracted_value(payload: ProofPayload) -> tuple[str, dict[str, str]]:
    params = payload.claim_data.extracted_parameters or {}
    value = next(iter(params.values()), "")
    return value, params


def proof_context(payload: ProofPayload) -> tuple[str, int]:
    """Goal id and period embedded in the proof's context.

    Falls back to the raw context (or claim parameters) as goal id and
    period 1 when the context is not the JSON we attached.
    """
    raw = payload.claim_data.context
    try:
        context = json.loads(raw)
        goal_id = context.get("goalId") or payload.claim_data.parameters
        week = int(context.get("weekNumber") or 1)
    except (ValueError, TypeError, AttributeError):
        goal_id = raw
        week = 1
    return goal_id, week


class ProofVerifier(ABC):

    @abstractmethod
    async def verify(self, payload: ProofPayload) -> ProofVerdict: ...

    @abstractmethod
    async def create_request(
        self, goal_id: str, week: int, provider_id: str
    ) -> tuple[str, str]:
        """Returns (request_url, session_id) for the prover app."""


class HttpProofVerifier(ProofVerifier):
    """Delegates signature checks to a verification service."""

    def __init__(self, service_url: str, app_id: str, app_secret: str, callback_url: str):
        self._service_url = service_url.rstrip("/")
        self._app_id = app_id
        self._app_secret = app_secret
        self._callback_url = callback_url

    async def verify(self, payload: ProofPayload) -> ProofVerdict:
        try:
            async with httpx.AsyncClient(timeout=15.0) as client:
                response = await client.post(
                    f"{self._service_url}/verify",
                    json=payload.model_dump(by_alias=True),
                )
                response.raise_for_status()
                valid = bool(response.json().get("valid"))
        except (httpx.HTTPError, ValueError) as e:
            logger.error("proof_verification_error", error=str(e))
            return ProofVerdict(valid=False, error=str(e))

        if not valid:
            return ProofVerdict(valid=False, error="Invalid proof signature")

        value, params = first_extracted_value(payload)
        return ProofVerdict(valid=True, extracted_value=value, extracted_parameters=params)

    async def create_request(
        self, goal_id: str, week: int, provider_id: str
    ) -> tuple[str, str]:
        async with httpx.AsyncClient(timeout=15.0) as client:
            response = await client.post(f"{self._service_url}/requests", json={
                "app_id": self._app_id,
                "app_secret": self._app_secret,
                "provider_id": provider_id,
                "context": json.dumps({"goalId": goal_id, "weekNumber": week}),
                "callback_url": self._callback_url,
            })
            response.raise_for_status()
            body = response.json()
        return body["requestUrl"], body["sessionId"]


class DevProofVerifier(ProofVerifier):
    """Accepts any proof that carries at least one signature."""

    def __init__(self, base_url: str = "http://localhost:3000"):
        self._base_url = base_url.rstrip("/")

    async def verify(self, payload: ProofPayload) -> ProofVerdict:
        if not payload.signatures:
            return ProofVerdict(valid=False, error="Invalid proof signature")
        value, params = first_extracted_value(payload)
        return ProofVerdict(valid=True, extracted_value=value, extracted_parameters=params)

    async def create_request(
        self, goal_id: str, week: int, provider_id: str
    ) -> tuple[str, str]:
        session_id = uuid.uuid4().hex
        query = urlencode({"provider": provider_id, "goal": goal_id, "week": week})
        return f"{self._base_url}/verify?{query}", session_id


def get_proof_verifier() -> ProofVerifier:
    settings = get_settings()
    if settings.proof_verifier_url:
        return HttpProofVerifier(
            settings.proof_verifier_url,
            settings.reclaim_app_id,
            settings.reclaim_app_secret,
            f"{settings.base_url.rstrip('/')}/verify/reclaim/callback",
        )
    return DevProofVerifier(settings.base_url)
