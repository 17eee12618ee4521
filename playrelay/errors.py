"""
Error classes so callers can branch on how a failure should be handled.

- NetworkError: connectivity (DNS, timeout, reset). Always retryable, never an auth failure.
- UpstreamError: the remote service answered with an error. ``show_stopper`` marks
  errors after which the client/source can no longer be used.
- PlayValidationError: the play itself is malformed. Retrying cannot fix it.
"""

from __future__ import annotations

import errno

import requests


class PlayRelayError(Exception): ...
class ConfigError(PlayRelayError): ...
class TransformConfigError(ConfigError): ...
class PlayValidationError(PlayRelayError): ...
class NetworkError(PlayRelayError): ...


class UpstreamError(PlayRelayError):
    def __init__(self, message: str, *, show_stopper: bool = False, response_body=None):
        super().__init__(message)
        self.show_stopper = show_stopper
        self.response_body = response_body


class ClientAuthError(UpstreamError):
    def __init__(self, message: str, *, response_body=None):
        super().__init__(message, show_stopper=True, response_body=response_body)


_NETWORK_ERRNOS = {
    errno.ECONNRESET, errno.ECONNREFUSED, errno.ECONNABORTED, errno.ETIMEDOUT,
    errno.EHOSTUNREACH, errno.ENETUNREACH, errno.EADDRNOTAVAIL,
}


def iter_causes(exc: BaseException | None):
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__ or exc.__context__


def _is_network_exception(exc: BaseException) -> bool:
    if isinstance(exc, NetworkError):
        return True
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    return isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS


def is_network_error(exc: BaseException) -> bool:
    """True if the error, or anything in its cause chain, is a connectivity failure."""
    return any(_is_network_exception(e) for e in iter_causes(exc))


def find_upstream_error(exc: BaseException, show_stopper: bool | None = None) -> UpstreamError | None:
    for e in iter_causes(exc):
        if isinstance(e, UpstreamError) and (show_stopper is None or e.show_stopper == show_stopper):
            return e
    return None


def is_fatal(exc: BaseException) -> bool:
    """Failures that must stop a processing loop rather than skip one item."""
    if is_network_error(exc):
        return True
    return find_upstream_error(exc, show_stopper=True) is not None
