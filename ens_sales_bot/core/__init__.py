"""Core module - interfaces, events, and exceptions."""

from .events import EventBus, Event, EventType, get_event_bus
from .interfaces import (
    SalesSource,
    PostingClient,
    SaleFormatter,
    SaleEvent,
    PriceTier,
    PostRecord,
    SchedulerState,
    SchedulerStatus,
    TransactionCategory,
    FormattedMessage,
    PublishResult,
    TickReport,
)
from .exceptions import (
    BotError,
    ConfigurationError,
    StoreError,
    TransientFetchError,
    PublishError,
    AuthenticationError,
    RemoteRateLimitError,
    TransportError,
    InvalidTransitionError,
)

__all__ = [
    # Events
    "EventBus",
    "Event",
    "EventType",
    "get_event_bus",
    # Interfaces
    "SalesSource",
    "PostingClient",
    "SaleFormatter",
    # Data classes
    "SaleEvent",
    "PriceTier",
    "PostRecord",
    "SchedulerState",
    "SchedulerStatus",
    "TransactionCategory",
    "FormattedMessage",
    "PublishResult",
    "TickReport",
    # Exceptions
    "BotError",
    "ConfigurationError",
    "StoreError",
    "TransientFetchError",
    "PublishError",
    "AuthenticationError",
    "RemoteRateLimitError",
    "TransportError",
    "InvalidTransitionError",
]
