"""Exception hierarchy for scheduling and delivery."""


class JuntoError(Exception):
    """Base class for all Junto errors."""


class InvalidTimezone(JuntoError):
    """Timezone name is missing or not a recognized IANA identifier."""

    def __init__(self, timezone: str | None) -> None:
        self.timezone = timezone
        super().__init__(f"Unknown timezone: {timezone!r}")


class InvalidTimeFormat(JuntoError):
    """Preferred send time cannot be parsed as a local time of day."""

    def __init__(self, raw: str | None) -> None:
        self.raw = raw
        super().__init__(f"Invalid send time: {raw!r}")


class PipelineFailure(JuntoError):
    """Generate-and-send failed for one user. The send marker must not be written."""


class NoContentError(PipelineFailure):
    """No recent posts are available for the user's followed sources."""


class SynthesisError(PipelineFailure):
    """The LLM did not return a usable digest."""


class EmailSendError(PipelineFailure):
    """The email transport did not accept the message."""


class StorageUnavailable(JuntoError):
    """A database read or write failed."""


class UserNotFound(JuntoError):
    """No subscribed user matches the lookup."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"User not found: {key}")
