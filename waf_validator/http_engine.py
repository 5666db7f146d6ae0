"""HTTP Request Engine module supporting multiple HTTP libraries."""

import asyncio
import codecs
import socket
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit
import logging

from .errors import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

USER_AGENT = "waf-validator/1.0"


class HTTPMethod(Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


@dataclass
class HTTPResponse:
    """Standardized HTTP response object."""
    status_code: int
    body: str
    elapsed_time: float
    request_url: str
    headers: Dict[str, str] = field(default_factory=dict)


def split_target(url: str) -> Tuple[str, str]:
    """
    Split ``url`` into its origin and the raw request target.

    The target is returned exactly as written so that dot segments and
    pre-encoded characters reach the server untouched.
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ConfigurationError(f"Invalid target URL: {url}")
    origin = f"{parts.scheme}://{parts.netloc}"
    target = url[len(origin):] or "/"
    if not target.startswith("/"):
        target = "/" + target
    return origin, target


def decode_body(raw: bytes, charset: Optional[str]) -> str:
    """Decode a response body, falling back to utf-8 for missing or unknown charsets."""
    encoding = "utf-8"
    if charset:
        try:
            encoding = codecs.lookup(charset).name
        except LookupError:
            logger.debug(f"Unknown response charset {charset!r}, decoding as utf-8")
    return raw.decode(encoding, errors="replace")


def _caused_by_dns(exc: BaseException) -> bool:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return True
        os_error = getattr(current, "os_error", None)
        if isinstance(os_error, socket.gaierror):
            return True
        current = current.__cause__ or current.__context__
    return False


class BaseHTTPEngine(ABC):
    """Abstract base class for HTTP engines."""

    name = "base"

    def __init__(self, ssl_verify: bool = False, follow_redirects: bool = False,
                 max_body_bytes: int = 4096, custom_headers: Optional[Dict[str, str]] = None):
        self.ssl_verify = ssl_verify
        self.follow_redirects = follow_redirects
        self.max_body_bytes = max_body_bytes
        self.default_headers = {
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }
        if custom_headers:
            self.default_headers.update(custom_headers)

    def prepare_headers(self, custom_headers: Optional[Dict] = None,
                        host_header: Optional[str] = None) -> Dict[str, str]:
        """Merge default, per-request and virtual-host headers."""
        headers = self.default_headers.copy()

        if custom_headers:
            headers.update(custom_headers)

        if host_header:
            headers["Host"] = host_header

        return headers

    @abstractmethod
    async def request(
        self,
        url: str,
        method: HTTPMethod = HTTPMethod.GET,
        headers: Optional[Dict] = None,
        data: Optional[str] = None,
        host_header: Optional[str] = None,
        timeout: float = 10.0,
    ) -> HTTPResponse:
        """
        Make an HTTP request.

        Raises TransportError when no response could be obtained.
        """

    @abstractmethod
    async def close(self):
        """Close the HTTP client."""


class AiohttpEngine(BaseHTTPEngine):
    """aiohttp-based HTTP engine."""

    name = "aiohttp"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.session = None

    async def _get_session(self):
        if self.session is None:
            import aiohttp
            connector = aiohttp.TCPConnector(limit=100, limit_per_host=30)
            self.session = aiohttp.ClientSession(connector=connector)
        return self.session

    async def _read_limited(self, response) -> bytes:
        chunks = []
        remaining = self.max_body_bytes
        while remaining > 0:
            chunk = await response.content.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    async def request(
        self,
        url: str,
        method: HTTPMethod = HTTPMethod.GET,
        headers: Optional[Dict] = None,
        data: Optional[str] = None,
        host_header: Optional[str] = None,
        timeout: float = 10.0,
    ) -> HTTPResponse:
        import aiohttp
        from yarl import URL

        session = await self._get_session()
        prepared_headers = self.prepare_headers(headers, host_header)

        start_time = time.perf_counter()

        try:
            async with session.request(
                method.value,
                URL(url, encoded=True),
                headers=prepared_headers,
                data=data,
                timeout=aiohttp.ClientTimeout(total=timeout),
                ssl=self.ssl_verify,
                allow_redirects=self.follow_redirects,
            ) as response:
                raw = await self._read_limited(response)
                return HTTPResponse(
                    status_code=response.status,
                    body=decode_body(raw, response.charset),
                    elapsed_time=time.perf_counter() - start_time,
                    request_url=url,
                    headers=dict(response.headers),
                )

        except asyncio.TimeoutError as e:
            raise TransportError(TransportError.TIMEOUT, f"no response within {timeout}s") from e
        except aiohttp.ClientConnectorError as e:
            kind = TransportError.DNS if _caused_by_dns(e) else TransportError.CONNECTION
            raise TransportError(kind, str(e)) from e
        except (aiohttp.ServerDisconnectedError, aiohttp.ClientOSError) as e:
            raise TransportError(TransportError.CONNECTION, str(e) or type(e).__name__) from e
        except aiohttp.ClientError as e:
            raise TransportError(TransportError.TRANSPORT, str(e) or type(e).__name__) from e

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None


class HttpxEngine(BaseHTTPEngine):
    """httpx-based HTTP engine."""

    name = "httpx"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.client = None

    async def _get_client(self):
        if self.client is None:
            import httpx
            self.client = httpx.AsyncClient(
                verify=self.ssl_verify,
                follow_redirects=self.follow_redirects,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20)
            )
        return self.client

    async def _read_limited(self, response) -> bytes:
        chunks = []
        remaining = self.max_body_bytes
        async for chunk in response.aiter_bytes():
            if remaining <= 0:
                break
            chunks.append(chunk[:remaining])
            remaining -= len(chunk)
        return b"".join(chunks)

    async def request(
        self,
        url: str,
        method: HTTPMethod = HTTPMethod.GET,
        headers: Optional[Dict] = None,
        data: Optional[str] = None,
        host_header: Optional[str] = None,
        timeout: float = 10.0,
    ) -> HTTPResponse:
        import httpx

        client = await self._get_client()
        prepared_headers = self.prepare_headers(headers, host_header)
        origin, target = split_target(url)

        start_time = time.perf_counter()

        try:
            # the "target" extension keeps httpx from normalising the path
            request = client.build_request(
                method.value,
                origin + "/",
                headers=prepared_headers,
                content=data,
                timeout=timeout,
                extensions={"target": target.encode("ascii")},
            )
            response = await client.send(request, stream=True)
            try:
                raw = await self._read_limited(response)
            finally:
                await response.aclose()

            return HTTPResponse(
                status_code=response.status_code,
                body=decode_body(raw, response.charset_encoding),
                elapsed_time=time.perf_counter() - start_time,
                request_url=url,
                headers=dict(response.headers),
            )

        except httpx.TimeoutException as e:
            raise TransportError(TransportError.TIMEOUT, f"no response within {timeout}s") from e
        except httpx.ConnectError as e:
            kind = TransportError.DNS if _caused_by_dns(e) else TransportError.CONNECTION
            raise TransportError(kind, str(e) or type(e).__name__) from e
        except (httpx.NetworkError, httpx.RemoteProtocolError) as e:
            raise TransportError(TransportError.CONNECTION, str(e) or type(e).__name__) from e
        except httpx.HTTPError as e:
            raise TransportError(TransportError.TRANSPORT, str(e) or type(e).__name__) from e

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None


class HTTPEngine:
    """Factory class for HTTP engines."""

    ENGINES = {
        "aiohttp": AiohttpEngine,
        "httpx": HttpxEngine,
    }

    def __init__(self, engine_name: str = "aiohttp", **options):
        if engine_name not in self.ENGINES:
            raise ConfigurationError(f"Unknown engine: {engine_name}. Available: {list(self.ENGINES.keys())}")

        self.engine_name = engine_name
        self.engine = self.ENGINES[engine_name](**options)
        logger.debug(f"Using {engine_name} HTTP engine")

    @classmethod
    def from_config(cls, config) -> "HTTPEngine":
        return cls(
            config.http_engine,
            ssl_verify=config.ssl_verify,
            follow_redirects=config.follow_redirects,
            max_body_bytes=config.max_body_bytes,
            custom_headers=config.custom_headers,
        )

    async def request(self, *args, **kwargs) -> HTTPResponse:
        """Make an HTTP request using the configured engine."""
        return await self.engine.request(*args, **kwargs)

    async def close(self):
        """Close the HTTP engine."""
        await self.engine.close()
