"""Bot Services - ingestion, classification, rate limiting and posting components."""

from .store import SalesStore
from .sale_filter import SaleFilter, FilterResult
from .tiers import TierClassifier, validate_tiers
from .rate_limiter import RateLimiter, RateLimitStatus
from .moralis_source import MoralisSalesSource
from .twitter_client import TwitterPostingClient, DryRunPostingClient
from .tweet_formatter import TweetFormatter
from .publisher import Publisher
from .pipeline import SalePipeline, TickResult
from .scheduler import Scheduler

__all__ = [
    "SalesStore",
    "SaleFilter",
    "FilterResult",
    "TierClassifier",
    "validate_tiers",
    "RateLimiter",
    "RateLimitStatus",
    "MoralisSalesSource",
    "TwitterPostingClient",
    "DryRunPostingClient",
    "TweetFormatter",
    "Publisher",
    "SalePipeline",
    "TickResult",
    "Scheduler",
]
