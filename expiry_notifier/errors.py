"""Error types raised by the expiry notifier."""


class ExpiryNotifierError(Exception):
    """Base class for expiry notifier errors."""


class InvalidDate(ExpiryNotifierError):
    """A product's expiry value cannot be turned into an instant."""

    def __init__(self, value, reason: str = ""):
        self.value = value
        self.reason = reason
        message = f"Cannot normalize date value {value!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ChannelUnavailable(ExpiryNotifierError):
    """No notification channel in the chain can be used right now."""


class SendFailure(ExpiryNotifierError):
    """A notification channel raised or reported failure."""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"Channel '{channel}' failed: {reason}")


class TransportFatal(ExpiryNotifierError):
    """The mail transport failed while sending the daily digest."""
