"""Automatic (zkTLS) verification router."""

from fastapi import APIRouter, Depends

from stakeit.database import get_store
from stakeit.dependencies import get_notifier, get_verifier
from stakeit.models.verification import (
    ProofCallbackResult, ProofPayload, ProofRequest, ProofRequestCreate
)
from stakeit.services.notifier import Notifier
from stakeit.services.proofs import ProofVerifier
from stakeit.services.verification import request_proof, submit_proof
from stakeit.store.base import GoalStore

router = APIRouter(prefix="/verify", tags=["Verification"])


@router.post("/reclaim", response_model=ProofRequest)
async def create_proof_request(
    data: ProofRequestCreate,
    store: GoalStore = Depends(get_store),
    verifier: ProofVerifier = Depends(get_verifier),
):
    """Get a prover URL for one period of an automatic goal."""
    return await request_proof(store, verifier, data.goal_id, data.week_number)


@router.post("/reclaim/callback", response_model=ProofCallbackResult)
async def proof_callback(
    payload: ProofPayload,
    store: GoalStore = Depends(get_store),
    verifier: ProofVerifier = Depends(get_verifier),
    notifier: Notifier = Depends(get_notifier),
):
    """Receive a generated proof and settle its period if it passes."""
    return await submit_proof(store, verifier, payload, notifier)
