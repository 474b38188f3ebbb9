"""Tests for the requests-based transport and its error classification."""

from unittest import mock

import pytest
import requests

from gem_mirror.errors import ItemPermanentError, ItemTransientError
from gem_mirror.transport import HttpTransport

URI = "https://gems.example.com/gems/rake-1.0.gem"


def _session(status=200, chunks=(b"ab", b"", b"c")):
    session = mock.MagicMock()
    session.headers = {}
    response = mock.MagicMock()
    if status >= 400:
        failed = requests.Response()
        failed.status_code = status
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=failed)
    response.iter_content.return_value = list(chunks)
    session.get.return_value.__enter__.return_value = response
    return session


def test_fetch_joins_chunks_and_sets_user_agent():
    session = _session()
    transport = HttpTransport(session=session, user_agent="test-agent/1", timeout=(1, 60))

    assert transport.fetch(URI) == b"abc"
    assert session.headers["User-Agent"] == "test-agent/1"
    session.get.assert_called_once_with(URI, stream=True, timeout=(1, 60))


@pytest.mark.parametrize("status", [500, 502, 503, 429, 408])
def test_server_errors_are_transient(status):
    with pytest.raises(ItemTransientError, match=str(status)):
        HttpTransport(session=_session(status)).fetch(URI)


@pytest.mark.parametrize("status", [401, 403, 404, 410])
def test_client_errors_are_permanent(status):
    with pytest.raises(ItemPermanentError, match=str(status)):
        HttpTransport(session=_session(status)).fetch(URI)


@pytest.mark.parametrize("exc", [requests.exceptions.ConnectionError("refused"),
                                 requests.exceptions.ReadTimeout("slow"),
                                 requests.exceptions.ChunkedEncodingError("cut")])
def test_network_failures_are_transient(exc):
    session = _session()
    session.get.side_effect = exc
    with pytest.raises(ItemTransientError):
        HttpTransport(session=session).fetch(URI)


def test_invalid_url_is_permanent():
    session = _session()
    session.get.side_effect = requests.exceptions.InvalidURL("bad")
    with pytest.raises(ItemPermanentError):
        HttpTransport(session=session).fetch(URI)


def test_file_uri_reads_from_disk(tmp_path):
    target = tmp_path / "rake-1.0.gem"
    target.write_bytes(b"local")
    assert HttpTransport(session=_session()).fetch(target.as_uri()) == b"local"


def test_missing_file_uri_is_permanent(tmp_path):
    with pytest.raises(ItemPermanentError):
        HttpTransport(session=_session()).fetch((tmp_path / "nope").as_uri())


def test_unsupported_scheme_is_permanent():
    with pytest.raises(ItemPermanentError, match="Unsupported"):
        HttpTransport(session=_session()).fetch("ftp://example.com/x")
