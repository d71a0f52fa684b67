from fastapi import APIRouter, Depends

from stockdash.api.dependencies import get_market_data_service
from stockdash.schemas.rate_limit import (
    ClearQueueResponse,
    QueueStatsResponse,
    RateLimitStatusResponse,
)
from stockdash.services.market_data_service import MarketDataService

router = APIRouter(prefix="/rate-limit", tags=["Rate limit"])


@router.get("/status", response_model=RateLimitStatusResponse)
async def rate_limit_status(
    service: MarketDataService = Depends(get_market_data_service),
) -> RateLimitStatusResponse:
    """Quota usage and countdown for UI feedback."""
    return RateLimitStatusResponse.from_snapshot(service.rate_limit_status())


@router.get("/queue", response_model=QueueStatsResponse)
async def queue_stats(
    service: MarketDataService = Depends(get_market_data_service),
) -> QueueStatsResponse:
    """How many provider calls are waiting and for how long."""
    return QueueStatsResponse.from_stats(service.queue_stats())


@router.post("/clear", response_model=ClearQueueResponse)
async def clear_queue(
    service: MarketDataService = Depends(get_market_data_service),
) -> ClearQueueResponse:
    """Reject every provider call still waiting for a quota slot.

    Calls already in flight are not affected.
    """
    return ClearQueueResponse(cleared=service.clear_queue())
