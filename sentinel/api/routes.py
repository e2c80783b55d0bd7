"""REST API routes."""

import logging
import time
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from sentinel.runtime import Runtime

logger = logging.getLogger(__name__)

router = APIRouter()


# Response models
class QueueStatus(BaseModel):
    pending: int
    done: int
    failed: int
    total: int


class SystemStatus(BaseModel):
    """System status response."""

    status: str
    tracked: int
    volume_filter: bool
    draining: bool
    queue: QueueStatus
    scheduler: dict[str, dict]


class InstrumentResponse(BaseModel):
    id: str
    symbol: str
    name: str
    pool_ref: Optional[str] = None
    launched_at: Optional[datetime] = None
    tracked_since: datetime
    last_price: Optional[float] = None
    market_cap: Optional[float] = None


class GainerResponse(BaseModel):
    instrument_id: str
    symbol: str
    gain_pct: float
    market_cap: float


class FeedStatus(BaseModel):
    """Seconds since the last successful poll of each feed (None if never)."""

    prices_age_seconds: Optional[float] = None
    discovery_age_seconds: Optional[float] = None


class DrainResponse(BaseModel):
    skipped: bool
    selected: int
    done: int
    queue: QueueStatus


class RetryResponse(BaseModel):
    success: bool
    message: str


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service not started")
    return runtime


def _age(timestamp: float | None) -> float | None:
    if timestamp is None:
        return None
    return round(time.time() - timestamp, 1)


@router.get("/status", response_model=SystemStatus)
async def get_status(request: Request):
    """Get system status."""
    runtime = get_runtime(request)
    summary = await runtime.reports.status_summary()
    return SystemStatus(
        status="running" if runtime.scheduler.is_running else "idle",
        tracked=summary["tracked"],
        volume_filter=summary["volume_filter"],
        draining=runtime.queue.is_draining,
        queue=QueueStatus(**summary["queue"]),
        scheduler=runtime.scheduler.status(),
    )


@router.get("/instruments", response_model=list[InstrumentResponse])
async def get_instruments(request: Request):
    """Instruments tracked for live aggregation, with their last price."""
    runtime = get_runtime(request)
    supply = runtime.settings.token_supply
    result = []
    for instrument in runtime.registry.snapshot():
        price = runtime.aggregator.get_last_price(instrument.id)
        result.append(
            InstrumentResponse(
                id=instrument.id,
                symbol=instrument.symbol,
                name=instrument.name,
                pool_ref=instrument.pool_ref,
                launched_at=instrument.launched_at,
                tracked_since=instrument.tracked_since,
                last_price=price,
                market_cap=price * supply if price else None,
            )
        )
    return result


@router.get("/gainers", response_model=list[GainerResponse])
async def get_gainers(request: Request):
    """Top gainers over the report window, largest gain first."""
    runtime = get_runtime(request)
    gainers = await runtime.reports.top_gainers()
    return [
        GainerResponse(
            instrument_id=g.instrument_id,
            symbol=g.symbol,
            gain_pct=round(g.gain_pct, 2),
            market_cap=g.market_cap,
        )
        for g in gainers
    ]


@router.get("/feeds", response_model=FeedStatus)
async def get_feeds(request: Request):
    runtime = get_runtime(request)
    return FeedStatus(
        prices_age_seconds=_age(runtime.sampler.last_update),
        discovery_age_seconds=_age(runtime.moralis.last_update),
    )


@router.post("/backfill/drain", response_model=DrainResponse)
async def drain_backfill(request: Request):
    """Run a backfill drain now with the startup batch size."""
    runtime = get_runtime(request)
    result = await runtime.queue.drain(runtime.settings.backfill_startup_batch_size)
    status = await runtime.queue.queue_status()
    return DrainResponse(
        skipped=result.skipped,
        selected=result.selected,
        done=result.done,
        queue=QueueStatus(**status),
    )


@router.post("/backfill/{instrument_id}/retry", response_model=RetryResponse)
async def retry_backfill(request: Request, instrument_id: str):
    """Manually re-enqueue a failed backfill task."""
    runtime = get_runtime(request)
    if not await runtime.queue.retry_failed(instrument_id):
        raise HTTPException(status_code=404, detail="No failed backfill task for this instrument")
    logger.info(f"Manual retry requested for {instrument_id}")
    return RetryResponse(success=True, message="Task re-enqueued")
