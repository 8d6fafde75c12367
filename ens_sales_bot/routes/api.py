"""REST API routes for the sales bot."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from ..bot_manager import get_bot_manager
from ..core.exceptions import ConfigurationError, InvalidTransitionError, StoreError
from ..core.interfaces import TransactionCategory
from ..models import (
    ConfigUpdateRequest,
    RateLimitResponse,
    SchedulerStatusResponse,
    TierUpdateRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _check(result: dict) -> dict:
    if not result.get("success"):
        raise HTTPException(status_code=400, detail=result.get("error"))
    return result


# ---- scheduler ----

@router.get("/scheduler/status", response_model=SchedulerStatusResponse)
async def get_scheduler_status():
    """Get current scheduler status."""
    return get_bot_manager().get_status()


@router.post("/scheduler/start")
async def start_scheduler():
    """Start the polling loop."""
    return _check(await get_bot_manager().start())


@router.post("/scheduler/stop")
async def stop_scheduler():
    """Stop the polling loop after the current tick."""
    return _check(await get_bot_manager().stop())


@router.post("/scheduler/force-stop")
async def force_stop_scheduler():
    """Emergency stop. The scheduler stays down until reset."""
    return _check(await get_bot_manager().force_stop())


@router.post("/scheduler/reset")
async def reset_scheduler():
    """Clear a force stop and the error counter."""
    return _check(await get_bot_manager().reset())


@router.post("/scheduler/reset-errors")
async def reset_scheduler_errors():
    """Clear the consecutive error counter."""
    return _check(await get_bot_manager().reset_errors())


@router.post("/scheduler/sync")
async def sync_now():
    """Run one fetch/filter/post cycle immediately."""
    manager = get_bot_manager()
    result = await manager.sync()
    if "result" not in result:
        raise HTTPException(status_code=400, detail=result.get("error"))
    return result


# ---- price tiers ----

@router.get("/tiers")
async def get_tiers(category: Optional[TransactionCategory] = None):
    """Get price tiers, optionally for one category."""
    try:
        tiers = get_bot_manager().get_tiers(category)
    except ConfigurationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"tiers": [t.to_dict() for t in tiers]}


@router.put("/tiers/{category}")
async def update_tiers(category: TransactionCategory, request: TierUpdateRequest):
    """Replace the four tiers of one category. Rejected sets leave the stored tiers unchanged."""
    manager = get_bot_manager()
    tiers = [t.to_tier(category) for t in request.tiers]
    try:
        updated = await manager.update_tiers(category, tiers)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=503, detail=f"Database unavailable: {e}")
    return {"success": True, "tiers": [t.to_dict() for t in updated]}


# ---- rate limit ----

@router.get("/rate-limit", response_model=RateLimitResponse)
async def get_rate_limit():
    """Get the rolling 24h post window."""
    return get_bot_manager().rate_limiter.status().to_dict()


# ---- sales ----

@router.get("/sales/recent")
async def get_recent_sales(limit: int = Query(default=50, ge=1, le=500)):
    """Get the most recent stored sales."""
    try:
        sales = get_bot_manager().store.get_recent_sales(limit)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=f"Database unavailable: {e}")
    return {"sales": [s.to_dict() for s in sales]}


@router.get("/sales/unposted")
async def get_unposted_sales(limit: int = Query(default=50, ge=1, le=500)):
    """Get stored sales that have not been posted yet."""
    try:
        sales = get_bot_manager().store.get_unposted_sales(limit)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=f"Database unavailable: {e}")
    return {"sales": [s.to_dict() for s in sales]}


@router.get("/sales/{sale_id}/preview")
async def preview_sale(sale_id: int):
    """Show the tweet a sale would produce, without posting."""
    try:
        return get_bot_manager().preview_sale(sale_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/sales/{sale_id}/post")
async def post_sale(sale_id: int):
    """Manually post a stored sale, subject to the rate limit."""
    manager = get_bot_manager()
    try:
        result = await manager.post_sale(sale_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    response = result.to_dict()
    if result.status == "rate_limited":
        response["rate_limit"] = manager.rate_limiter.status().to_dict()
    return response


# ---- posts ----

@router.get("/posts/history")
async def get_post_history(limit: int = Query(default=50, ge=1, le=500)):
    """Get recent publish attempts, successful and failed."""
    try:
        posts = get_bot_manager().store.get_post_history(limit)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=f"Database unavailable: {e}")
    return {"posts": [p.to_dict() for p in posts]}


# ---- config ----

@router.get("/config")
async def get_current_config():
    """Get current bot configuration (public fields only)."""
    return get_bot_manager().config.get_public_config()


@router.put("/config")
async def update_bot_config(request: ConfigUpdateRequest):
    """Update bot configuration. Only allowed when the scheduler is not running."""
    manager = get_bot_manager()

    # Convert request to dict, excluding None values
    updates = request.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No config fields given")

    try:
        new_config = await manager.update_config(updates)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "config": new_config.get_public_config()
    }


@router.get("/twitter/test")
async def test_twitter_connection():
    """Check the X credentials without posting anything."""
    return await get_bot_manager().test_twitter_connection()


# ---- stats / admin ----

@router.get("/stats")
async def get_stats():
    """Get sales, posting and scheduler statistics."""
    try:
        return get_bot_manager().get_stats()
    except StoreError as e:
        raise HTTPException(status_code=503, detail=f"Database unavailable: {e}")


@router.post("/admin/reset-posts")
async def reset_posts():
    """Delete all post records and rate-limit entries."""
    try:
        deleted = await get_bot_manager().reset_posts()
    except StoreError as e:
        raise HTTPException(status_code=503, detail=f"Database unavailable: {e}")
    return {"success": True, "deleted": deleted}
