import logging
import time
from pathlib import Path
from typing import Optional, Protocol, Tuple
from urllib.parse import unquote, urlparse

import requests

from . import config
from .errors import ItemPermanentError, ItemTransientError

logger = logging.getLogger(__name__)

# Statuses worth another attempt; everything else in 4xx is final.
TRANSIENT_STATUS = {408, 425, 429}
CHUNK_SIZE = 1024 ** 2


class Transport(Protocol):
    def fetch(self, uri: str) -> bytes:
        """Return the body at ``uri`` or raise ItemTransientError/ItemPermanentError."""
        ...


class HttpTransport:
    """
    Fetch bytes over HTTP(S) with requests, or from disk for ``file://`` URIs.

    Errors are classified so the worker pool can tell a flaky upstream from a
    missing file, although both consume one attempt.
    """

    def __init__(self, session: Optional[requests.Session] = None,
                 user_agent: str = config.USER_AGENT,
                 timeout: Tuple[int, int] = (config.CONNECT_TIMEOUT, config.DOWNLOAD_TIMEOUT)):
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = user_agent
        self.timeout = timeout

    def fetch(self, uri: str) -> bytes:
        parsed = urlparse(uri)
        if parsed.scheme == "file":
            return self._fetch_file(Path(unquote(parsed.path)), uri)
        if parsed.scheme not in ("http", "https"):
            raise ItemPermanentError(f"Unsupported URI scheme for {uri}", uri)
        return self._fetch_http(uri)

    def _fetch_file(self, path: Path, uri: str) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise ItemPermanentError(f"Not found: {uri}", uri) from e
        except OSError as e:
            raise ItemTransientError(f"Error reading {uri}: {e}", uri) from e

    def _fetch_http(self, uri: str) -> bytes:
        start = time.time()
        try:
            with self.session.get(uri, stream=True, timeout=self.timeout) as r:
                r.raise_for_status()
                content = bytearray()
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    if time.time() - start > self.timeout[1]:
                        raise ItemTransientError(f"Download timeout for {uri}", uri)
                    if chunk:
                        content += chunk
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status is not None and (status >= 500 or status in TRANSIENT_STATUS):
                raise ItemTransientError(f"HTTP {status} for {uri}", uri) from e
            raise ItemPermanentError(f"HTTP {status} for {uri}", uri) from e
        except (requests.exceptions.ConnectionError,
                requests.exceptions.Timeout,
                requests.exceptions.ChunkedEncodingError) as e:
            raise ItemTransientError(f"Error when downloading {uri}: {e}", uri) from e
        except requests.exceptions.RequestException as e:
            raise ItemPermanentError(f"Error when downloading {uri}: {e}", uri) from e
        logger.debug("Fetched %s (%d bytes) in %.2f seconds", uri, len(content), time.time() - start)
        return bytes(content)
