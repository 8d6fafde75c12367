"""Custom exceptions for the sales bot."""


class BotError(Exception):
    """Base exception for bot errors."""
    pass


class ConfigurationError(BotError):
    """Price tier bands or settings are malformed."""
    pass


class StoreError(BotError):
    """Durable store is unavailable or a query failed."""
    pass


class TransientFetchError(BotError):
    """Data source fetch failed; retried on the next tick."""
    pass


class PublishError(BotError):
    """Posting to X failed."""
    pass


class AuthenticationError(PublishError):
    """Posting credentials were rejected."""
    pass


class RemoteRateLimitError(PublishError):
    """X answered with HTTP 429."""
    pass


class TransportError(PublishError):
    """Network or unexpected HTTP failure while posting."""
    pass


class InvalidTransitionError(BotError):
    """Scheduler state change not allowed from the current state."""
    pass
