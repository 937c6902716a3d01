from __future__ import annotations

from typing import Literal


StatusCode = Literal[
    "waiting",
    "err_offline",
    "err_ratelimit",
    "err_server",
    "err_timeout",
    "err_generic",
]


class GeodataError(Exception):
    """Base class for failures surfaced by the geodata client."""

    status_code: StatusCode = "err_generic"

    def __init__(self, message: str = "", *, http_status: int | None = None) -> None:
        super().__init__(message or self.status_code)
        self.http_status = http_status


class OfflineError(GeodataError):
    status_code = "err_offline"


class RateLimitedError(GeodataError):
    status_code = "err_ratelimit"


class ServerError(GeodataError):
    status_code = "err_server"


class FetchTimeoutError(GeodataError):
    status_code = "err_timeout"


class AllEndpointsExhaustedError(GeodataError):
    status_code = "err_generic"


class EndpointFailure(Exception):
    """
    A single endpoint attempt failed softly; the client moves on to the next one.

    Never leaves the client.
    """

    def __init__(
        self, endpoint: str, reason: str, *, http_status: int | None = None
    ) -> None:
        super().__init__(f"{endpoint}: {reason}")
        self.endpoint = endpoint
        self.reason = reason
        self.http_status = http_status


class FetchCancelled(Exception):
    """The operation's cancel token fired. Not an error from the user's point of view."""


def status_for_error(err: BaseException) -> StatusCode:
    if isinstance(err, FetchCancelled):
        return "waiting"
    if isinstance(err, GeodataError):
        return err.status_code
    return "err_generic"
