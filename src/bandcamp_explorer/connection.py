"""Opening item pages and search pages as HTTP responses.

``ConnectionBuilder.open`` accepts ``http``/``https`` and ``file`` URLs and
always hands back an ``httpx.Response``. Redirects are followed manually so
that cross-protocol hops (http -> https) work and the hop limit is enforced
here rather than inside httpx.
"""

from __future__ import annotations

import logging
import ssl
from pathlib import Path
from urllib.parse import urlsplit
from urllib.request import url2pathname

import httpx

from bandcamp_explorer.config import HttpConfig

logger = logging.getLogger(__name__)

REDIRECT_CODES = frozenset({301, 302, 303})

# OpenSSL verify codes for a chain we cannot build to a trusted root
UNTRUSTED_CHAIN_CODES = frozenset({2, 18, 19, 20, 21})
UNTRUSTED_CHAIN_MESSAGES = (
    "self signed certificate",
    "self-signed certificate",
    "unable to get local issuer certificate",
    "unable to get issuer certificate",
    "unable to verify the first certificate",
)


class UnsupportedProtocolError(ValueError):
    """URL scheme other than http, https or file."""


def url_scheme(url: str) -> str:
    return urlsplit(url).scheme.lower()


def file_url_to_path(url: str) -> Path:
    """Convert a ``file:`` URL into a local path."""
    parts = urlsplit(url)
    path = url2pathname(parts.path)
    if parts.netloc and parts.netloc.lower() != "localhost":
        path = f"//{parts.netloc}{path}"
    return Path(path)


def is_untrusted_certificate_error(exc: BaseException) -> bool:
    """Check whether a connection error was caused by an untrusted certificate chain.

    httpx wraps the ``ssl`` error a few levels deep, so the whole
    cause/context chain is searched. Hostname mismatches and expired
    certificates are not matched.
    """
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ssl.SSLCertVerificationError):
            if getattr(current, "verify_code", None) in UNTRUSTED_CHAIN_CODES:
                return True
            message = str(getattr(current, "verify_message", None) or current).lower()
            return any(phrase in message for phrase in UNTRUSTED_CHAIN_MESSAGES)
        current = current.__cause__ or current.__context__
    return False


class ConnectionBuilder:
    """
    Opens URLs for the resource fetcher and the release parser.

    HTTP clients are created lazily and shared between threads. A second,
    non-verifying client only exists after an untrusted-certificate retry.
    """

    def __init__(self, config: HttpConfig | None = None):
        self.config = config or HttpConfig()
        self._client: httpx.Client | None = None
        self._insecure_client: httpx.Client | None = None

    def _make_client(self, verify: bool) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(
                self.config.read_timeout_s,
                connect=self.config.connect_timeout_s,
            ),
            follow_redirects=False,
            verify=verify,
            headers={"User-Agent": self.config.user_agent},
        )

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialized HTTP client."""
        if self._client is None:
            self._client = self._make_client(verify=True)
        return self._client

    @property
    def insecure_client(self) -> httpx.Client:
        """Client with certificate verification disabled."""
        if self._insecure_client is None:
            self._insecure_client = self._make_client(verify=False)
        return self._insecure_client

    def close(self) -> None:
        """Close HTTP clients."""
        for client in (self._client, self._insecure_client):
            if client is not None:
                client.close()
        self._client = None
        self._insecure_client = None

    def __enter__(self) -> ConnectionBuilder:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # pyright: ignore[reportMissingParameterType, reportUnknownParameterType]
        self.close()

    def open(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        data: str | None = None,
    ) -> httpx.Response:
        """
        Open a URL and return the first non-redirecting response.

        Error statuses are returned as-is; callers decide how to treat them.

        Raises:
            UnsupportedProtocolError: scheme is not http, https or file
            FileNotFoundError: file URL points to a missing file
            httpx.TooManyRedirects: more than ``max_redirects`` hops
            httpx.HTTPError: transport failures
        """
        scheme = url_scheme(url)
        if scheme == "file":
            return self._open_file(url)
        if scheme in ("http", "https"):
            return self._open_http(url, method, headers, data)
        raise UnsupportedProtocolError(f"Unsupported protocol: {scheme or '(none)'}")

    def _open_file(self, url: str) -> httpx.Response:
        path = file_url_to_path(url)
        content = path.read_bytes()
        return httpx.Response(200, content=content, request=httpx.Request("GET", url))

    def _open_http(
        self,
        url: str,
        method: str,
        headers: dict[str, str] | None,
        data: str | None,
    ) -> httpx.Response:
        current = httpx.URL(url)
        redirects = 0

        while True:
            response = self._send(current, method, headers, data)

            if response.status_code not in REDIRECT_CODES:
                return response

            redirects += 1
            if redirects > self.config.max_redirects:
                response.close()
                raise httpx.TooManyRedirects(
                    f"Max redirects limit exceeded ({self.config.max_redirects})",
                    request=response.request,
                )

            location = response.headers.get("Location")
            if location is None:
                return response

            new_url = current.join(location)
            logger.debug(f"Redirect: {current} -> {new_url} (code: {response.status_code})")
            response.close()
            current = new_url

    def _send(
        self,
        url: httpx.URL,
        method: str,
        headers: dict[str, str] | None,
        data: str | None,
    ) -> httpx.Response:
        content = data.encode("utf-8") if data is not None else None
        try:
            return self.client.request(method, url, headers=headers, content=content)
        except httpx.ConnectError as e:
            if not (
                url.scheme == "https"
                and self.config.allow_insecure_retry
                and is_untrusted_certificate_error(e)
            ):
                raise
            logger.warning(
                f"SSL certificate validation failed for {url}. "
                "Retrying with SSL certificate checking disabled..."
            )
            return self.insecure_client.request(method, url, headers=headers, content=content)


## Tests


def test_file_url_to_path():
    assert file_url_to_path("file:///tmp/page.html") == Path("/tmp/page.html")
    assert file_url_to_path("file:///tmp/my%20page.html") == Path("/tmp/my page.html")


def test_untrusted_certificate_detection():
    err = ssl.SSLCertVerificationError(1, "certificate verify failed")
    err.verify_code = 19
    err.verify_message = "self-signed certificate in certificate chain"

    wrapped = httpx.ConnectError("handshake failed")
    wrapped.__cause__ = err
    assert is_untrusted_certificate_error(wrapped)

    mismatch = ssl.SSLCertVerificationError(1, "certificate verify failed")
    mismatch.verify_code = 62
    mismatch.verify_message = "hostname mismatch"
    wrapped = httpx.ConnectError("handshake failed")
    wrapped.__cause__ = mismatch
    assert not is_untrusted_certificate_error(wrapped)

    assert not is_untrusted_certificate_error(httpx.ConnectError("connection refused"))
