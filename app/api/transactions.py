"""Transaction intake and query endpoints."""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_correlation_id, get_transaction_service
from app.exceptions import InfrastructureUnavailableError
from app.schemas.common import CorrelatedResponse
from app.schemas.transaction import TransactionCreate, TransactionResponse
from app.services.intake import TransactionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/transactions", tags=["Transactions"])


@router.post(
    "",
    response_model=CorrelatedResponse[TransactionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_transaction(
    tx_data: TransactionCreate,
    service: TransactionService = Depends(get_transaction_service),
    correlation_id: str = Depends(get_correlation_id),
):
    """
    Submit a contract call.

    The record starts in PENDING_SIGN and is queued for the submission
    worker; progress is pushed over the notifications socket.
    """
    try:
        tx = await service.create(tx_data)
    except InfrastructureUnavailableError as e:
        logger.error(f"Intake failed: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=TransactionResponse.model_validate(tx),
    )


@router.get("/{user_address}", response_model=CorrelatedResponse[List[TransactionResponse]])
async def list_user_transactions(
    user_address: str,
    service: TransactionService = Depends(get_transaction_service),
    correlation_id: str = Depends(get_correlation_id),
):
    """Get all transactions for a user."""
    txs = await service.find_by_user_address(user_address)
    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=[TransactionResponse.model_validate(tx) for tx in txs],
    )
