from __future__ import annotations


class LanesightError(Exception):
    """Base class for every error raised by the data-acquisition layer."""


class Unavailable(LanesightError):
    """A dependency is not reachable or could not be found (lockfile, client)."""


class MalformedInput(LanesightError):
    """A lockfile or response failed structural validation."""


class RemoteFailure(LanesightError):
    """Non-success status or transport error from an external call."""


class NotFound(LanesightError):
    """No matching dataset was found. Callers usually treat this as empty."""


class StreamFailure(LanesightError):
    """The completion stream broke mid-read."""


def truncate_message(text: str, limit: int = 140) -> str:
    text = str(text or "")
    return text if len(text) <= limit else text[:limit]
