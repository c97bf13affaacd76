"""API dependencies for dependency injection."""
from typing import Optional
from uuid import uuid4

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.intake import TransactionService
from app.services.queue import SubmissionQueue


def get_correlation_id(
    x_correlation_id: Optional[str] = Header(None, alias="X-Correlation-ID")
) -> str:
    """Get or generate correlation ID for request tracing."""
    return x_correlation_id or str(uuid4())


def get_submission_queue(request: Request) -> SubmissionQueue:
    """Submission queue created by the application lifespan."""
    queue = getattr(request.app.state, "submission_queue", None)
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Submission queue not initialized"
        )
    return queue


async def get_transaction_service(
    db: AsyncSession = Depends(get_db),
    queue: SubmissionQueue = Depends(get_submission_queue),
) -> TransactionService:
    """Get transaction service instance."""
    return TransactionService(db, queue)
