"""FastAPI dependencies shared by the routers."""

from fastapi import Request

from stakeit.services.notifier import Notifier
from stakeit.services.payments import PaymentGateway, get_payment_gateway
from stakeit.services.proofs import ProofVerifier, get_proof_verifier


def get_notifier(request: Request) -> Notifier:
    """Notifier started by the application lifespan."""
    return request.app.state.notifier


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_verifier() -> ProofVerifier:
    return get_proof_verifier()
