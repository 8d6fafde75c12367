"""Pydantic models for API requests and responses."""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from .core.interfaces import PriceTier, TransactionCategory


class ConfigUpdateRequest(BaseModel):
    """Request model for config updates."""
    dry_run: Optional[bool] = None
    contract_addresses: Optional[List[str]] = None
    fetch_limit: Optional[int] = Field(default=None, ge=1, le=100)
    poll_interval_seconds: Optional[float] = Field(default=None, ge=5, le=3600)
    min_price_eth: Optional[float] = Field(default=None, ge=0)
    min_block_number: Optional[int] = Field(default=None, ge=0)
    daily_post_limit: Optional[int] = Field(default=None, ge=1, le=1000)
    twitter_enabled: Optional[bool] = None
    auto_post_enabled: Optional[bool] = None
    auto_post_max_age_hours: Optional[float] = Field(default=None, gt=0, le=168)


class TierModel(BaseModel):
    """One price band as sent by the admin UI."""
    level: int
    min_usd: float
    max_usd: Optional[float] = None
    min_eth: float
    description: str = ""

    def to_tier(self, category: TransactionCategory) -> PriceTier:
        return PriceTier(
            category=category,
            level=self.level,
            min_usd=self.min_usd,
            max_usd=self.max_usd,
            min_eth=self.min_eth,
            description=self.description,
        )


class TierUpdateRequest(BaseModel):
    """Request model for replacing a category's tiers."""
    tiers: List[TierModel]


class SchedulerStatusResponse(BaseModel):
    """Response model for scheduler status."""
    status: str
    enabled: bool
    cursor: int
    consecutive_errors: int
    last_run_at: Optional[float] = None
    last_result: Optional[Dict[str, Any]] = None
    interval_seconds: float
    next_run_at: Optional[float] = None
    tick_in_progress: bool = False


class RateLimitResponse(BaseModel):
    """Response model for the rolling post window."""
    posts_in_window: int
    remaining: int
    limit: int
    limit_reached: bool
    can_post: bool
    reset_at: Optional[str] = None
    store_available: bool = True


class ApiResponse(BaseModel):
    """Generic API response."""
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    data: Optional[Any] = None
