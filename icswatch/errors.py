from __future__ import annotations


class IcsWatchError(Exception):
    phase = "unknown"

    def __str__(self) -> str:
        message = super().__str__()
        return f"[{self.phase}] {message}" if message else f"[{self.phase}]"


class FetchError(IcsWatchError):
    """The calendar source could not be downloaded or answered with a non-success status."""

    phase = "fetching"


class ParseError(IcsWatchError):
    """The downloaded body is not a calendar, or holds no calendar at all."""

    phase = "fetching"


class IdentityError(IcsWatchError):
    phase = "comparing"


class PersistenceError(IcsWatchError):
    phase = "persisting"


class CallbackError(IcsWatchError):
    phase = "dispatching"

    def __init__(self, callback_name: str, cause: BaseException) -> None:
        super().__init__(f"callback {callback_name} failed: {type(cause).__name__}: {cause}")
        self.callback_name = callback_name
        self.cause = cause
