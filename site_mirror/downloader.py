"""HTTP fetcher with timeouts, bounded retries and a body size cap."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import AppConfig

logger = logging.getLogger("site_mirror")

RETRY_STATUSES = {429, 500, 502, 503, 504}


class FetchError(Exception):
    """A resource could not be fetched: non-2xx, network error or oversize."""

    def __init__(self, url: str, message: str):
        super().__init__(f"Failed to fetch {url}: {message}")
        self.url = url
        self.message = message


@dataclass
class FetchedBody:
    content: bytes
    # Charset httpx resolved from Content-Type, utf-8 when none is declared
    encoding: str = "utf-8"

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding, errors="replace")


class Downloader:
    def __init__(self, config: AppConfig, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            dl = self.config.download
            self._client = httpx.Client(
                timeout=httpx.Timeout(dl.timeout, connect=dl.connect_timeout),
                follow_redirects=True,
                headers={"User-Agent": dl.user_agent},
                transport=self._transport,
            )
        return self._client

    def close(self):
        if self._client and not self._client.is_closed:
            self._client.close()

    def fetch(self, url: str) -> bytes:
        """GET url and return the body. Raises FetchError on failure."""
        return self.fetch_body(url).content

    def fetch_body(self, url: str) -> FetchedBody:
        """GET url with retries; the body keeps its declared charset."""
        max_retries = max(1, self.config.download.max_retries)
        backoff = self.config.download.backoff_factor

        last_error = None
        for attempt in range(max_retries):
            try:
                return self._stream_fetch(url)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status not in RETRY_STATUSES:
                    raise FetchError(url, f"HTTP {status} {e.response.reason_phrase}") from e
                last_error = FetchError(url, f"HTTP {status} {e.response.reason_phrase}")
            except httpx.InvalidURL as e:
                raise FetchError(url, f"invalid URL: {e}") from e
            except httpx.HTTPError as e:
                last_error = FetchError(url, str(e) or e.__class__.__name__)

            if attempt + 1 < max_retries:
                wait = backoff ** attempt
                logger.warning(f"Retry {attempt + 1}/{max_retries} for {url}: "
                               f"{last_error.message} (wait {wait}s)")
                time.sleep(wait)

        raise last_error

    def fetch_text(self, url: str) -> str:
        """GET url and decode it with the response charset."""
        return self.fetch_body(url).text

    def _stream_fetch(self, url: str) -> FetchedBody:
        max_size = self.config.download.max_file_size
        body = bytearray()

        with self.client.stream("GET", url) as resp:
            resp.raise_for_status()

            content_length = resp.headers.get("content-length")
            if content_length and int(content_length) > max_size:
                raise FetchError(url, f"File too large: {content_length} bytes")

            for chunk in resp.iter_bytes(chunk_size=65536):
                body.extend(chunk)
                if len(body) > max_size:
                    raise FetchError(url, f"File exceeded max size during download: {len(body)} bytes")

            encoding = resp.encoding

        return FetchedBody(bytes(body), encoding)
