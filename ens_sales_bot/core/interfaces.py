"""Abstract interfaces and records shared across the pipeline."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

WEI_PER_ETH = 10 ** 18


class TransactionCategory(str, Enum):
    """Transaction categories that carry their own price tiers."""
    SALES = "sales"
    REGISTRATIONS = "registrations"
    BIDS = "bids"


class SchedulerStatus(str, Enum):
    """Scheduler lifecycle states."""
    STOPPED = "stopped"
    RUNNING = "running"
    FORCE_STOPPED = "force_stopped"


@dataclass(frozen=True)
class SaleEvent:
    """One on-chain ENS sale."""
    transaction_hash: str
    block_number: int
    price_eth: float
    buyer_address: str
    seller_address: str
    name: str
    price_usd: Optional[float] = None
    contract_address: str = ""
    token_id: str = ""
    marketplace: str = ""
    block_timestamp: Optional[str] = None
    id: Optional[int] = None
    posted: bool = False
    tweet_id: Optional[str] = None

    @classmethod
    def from_moralis(cls, trade: dict, contract_address: str = "") -> "SaleEvent":
        """Create a SaleEvent from a Moralis NFT trade payload."""
        decimals = int(trade.get("token_decimals") or 18)
        try:
            price_eth = int(trade.get("price") or 0) / (10 ** decimals)
        except (TypeError, ValueError):
            price_eth = 0.0

        usd = trade.get("current_usd_value")
        try:
            price_usd = float(usd) if usd not in (None, "") else None
        except (TypeError, ValueError):
            price_usd = None

        token_ids = trade.get("token_ids") or []
        metadata = trade.get("metadata") or {}

        return cls(
            transaction_hash=str(trade.get("transaction_hash", "")),
            block_number=int(trade.get("block_number") or 0),
            price_eth=round(price_eth, 6),
            price_usd=price_usd,
            buyer_address=str(trade.get("buyer_address") or "").lower(),
            seller_address=str(trade.get("seller_address") or "").lower(),
            name=metadata.get("name") or trade.get("token_name") or "Unknown ENS",
            contract_address=(trade.get("token_address") or contract_address).lower(),
            token_id=str(token_ids[0]) if token_ids else "",
            marketplace=str(trade.get("marketplace") or ""),
            block_timestamp=trade.get("block_timestamp"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "id": self.id,
            "transaction_hash": self.transaction_hash,
            "block_number": self.block_number,
            "price_eth": self.price_eth,
            "price_usd": self.price_usd,
            "buyer_address": self.buyer_address,
            "seller_address": self.seller_address,
            "name": self.name,
            "contract_address": self.contract_address,
            "token_id": self.token_id,
            "marketplace": self.marketplace,
            "block_timestamp": self.block_timestamp,
            "posted": self.posted,
            "tweet_id": self.tweet_id,
        }


@dataclass(frozen=True)
class PriceTier:
    """A USD band [min_usd, max_usd) with its ETH auto-post floor."""
    category: TransactionCategory
    level: int
    min_usd: float
    max_usd: Optional[float]
    min_eth: float
    description: str = ""

    def contains(self, usd_amount: float) -> bool:
        if usd_amount < self.min_usd:
            return False
        return self.max_usd is None or usd_amount < self.max_usd

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "level": self.level,
            "min_usd": self.min_usd,
            "max_usd": self.max_usd,
            "min_eth": self.min_eth,
            "description": self.description,
        }


@dataclass
class PostRecord:
    """One publish attempt."""
    sale_id: Optional[int]
    success: bool
    posted_at: float
    content: str = ""
    tweet_id: Optional[str] = None
    error_message: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "success": self.success,
            "tweet_id": self.tweet_id,
            "error_message": self.error_message,
            "content": self.content,
            "posted_at": self.posted_at,
        }


@dataclass
class SchedulerState:
    """Persisted scheduler singleton."""
    status: SchedulerStatus = SchedulerStatus.STOPPED
    cursor: int = 0
    consecutive_errors: int = 0
    last_run_at: Optional[float] = None
    last_result: Optional[Dict[str, Any]] = None

    @property
    def enabled(self) -> bool:
        return self.status == SchedulerStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "enabled": self.enabled,
            "cursor": self.cursor,
            "consecutive_errors": self.consecutive_errors,
            "last_run_at": self.last_run_at,
            "last_result": self.last_result,
        }


@dataclass
class FormattedMessage:
    """Tweet text plus optional image payload."""
    text: str
    image: Optional[bytes] = None


@dataclass
class PublishResult:
    """Result of a publish attempt."""
    status: str  # posted, rate_limited, already_posted, failed, disabled
    sale_id: Optional[int] = None
    tweet_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == "posted"

    @property
    def skipped(self) -> bool:
        return self.status in ("rate_limited", "already_posted", "disabled")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "success": self.success,
            "skipped": self.skipped,
            "sale_id": self.sale_id,
            "tweet_id": self.tweet_id,
            "error": self.error,
        }


@dataclass
class TickReport:
    """Counters for one scheduler tick."""
    fetched: int = 0
    accepted: int = 0
    duplicates: int = 0
    below_price: int = 0
    below_block: int = 0
    posted: int = 0
    skipped: int = 0
    failed: int = 0
    error: Optional[str] = None
    results: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fetched": self.fetched,
            "accepted": self.accepted,
            "duplicates": self.duplicates,
            "below_price": self.below_price,
            "below_block": self.below_block,
            "posted": self.posted,
            "skipped": self.skipped,
            "failed": self.failed,
            "error": self.error,
        }


class SalesSource(ABC):
    """Abstract interface for the sales data API."""

    @abstractmethod
    async def fetch_sales_since(self, cursor: int) -> Tuple[List[SaleEvent], int]:
        """
        Fetch sales newer than the cursor. Returns (sales, new_cursor), where
        new_cursor is the block up to which ingestion is complete.
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass


class PostingClient(ABC):
    """Abstract interface for the posting service."""

    @abstractmethod
    async def post(self, message: FormattedMessage) -> str:
        """Post a message and return the external post id."""
        pass

    async def test_connection(self) -> Dict[str, Any]:
        """Verify credentials without posting."""
        return {"success": False, "error": f"{type(self).__name__} has no connection check"}


class SaleFormatter(ABC):
    """Turns a sale into a ready-to-post message."""

    @abstractmethod
    def format(self, sale: SaleEvent) -> FormattedMessage:
        pass
