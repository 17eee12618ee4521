import errno

import requests

from playrelay.errors import (
    ClientAuthError,
    NetworkError,
    PlayValidationError,
    UpstreamError,
    find_upstream_error,
    is_fatal,
    is_network_error,
)


def wrapped(outer, inner):
    try:
        try:
            raise inner
        except Exception as e:
            raise outer from e
    except Exception as e:
        return e


def test_network_error_found_in_cause_chain():
    err = wrapped(RuntimeError("submit failed"), requests.ConnectionError("reset"))
    assert is_network_error(err)
    assert is_network_error(OSError(errno.ECONNREFUSED, "refused"))
    assert not is_network_error(OSError(errno.ENOENT, "missing"))


def test_upstream_error_found_by_show_stopper():
    err = wrapped(RuntimeError("outer"), UpstreamError("offline", show_stopper=True))
    assert find_upstream_error(err) is err.__cause__
    assert find_upstream_error(err, show_stopper=False) is None


def test_fatal_classification():
    assert is_fatal(NetworkError("timeout"))
    assert is_fatal(ClientAuthError("expired"))
    assert is_fatal(UpstreamError("offline", show_stopper=True))
    assert not is_fatal(UpstreamError("rejected"))
    assert not is_fatal(PlayValidationError("no date"))
    assert not is_fatal(ValueError("something else"))
