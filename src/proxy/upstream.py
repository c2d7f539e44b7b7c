"""Upstream client for forwarding requests to registry origins."""

from __future__ import annotations

import logging
import urllib.parse
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Tuple

import aiohttp

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url

from .rewrite import PathRewriter

logger = logging.getLogger(__name__)

_HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "host",
})

# Canonical header names to forward (lowercased for comparison)
_FORWARD_RESPONSE_HEADERS = {
    "accept-ranges": "Accept-Ranges",
    "cache-control": "Cache-Control",
    "content-disposition": "Content-Disposition",
    "content-encoding": "Content-Encoding",
    "content-length": "Content-Length",
    "content-range": "Content-Range",
    "content-type": "Content-Type",
    "docker-content-digest": "Docker-Content-Digest",
    "docker-distribution-api-version": "Docker-Distribution-Api-Version",
    "etag": "ETag",
    "last-modified": "Last-Modified",
    "location": "Location",
    "retry-after": "Retry-After",
    "vary": "Vary",
    "www-authenticate": "WWW-Authenticate",
}

_REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class UpstreamClient:
    """Client for forwarding requests to upstream registries."""

    def __init__(self, rewriter: PathRewriter, timeout: int = Constants.REQUEST_TIMEOUT):
        """Initialize the upstream client.

        Args:
            rewriter: Rewrite engine (and, through it, the platform registry).
            timeout: Request timeout in seconds.
        """
        self._rewriter = rewriter
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._allowed_hosts = rewriter.registry.redirect_hosts()

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=Constants.CONNECTION_LIMIT)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=connector,
                auto_decompress=False,
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def build_request(
        self,
        platform_key: str,
        path_qs: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[str, Dict[str, str]]:
        """Build the upstream URL and request headers.

        Returns ``("", {})`` when ``platform_key`` is not registered.
        """
        url = self._rewriter.resolve(path_qs, platform_key)
        if url is None:
            return "", {}
        if is_debug_enabled(logger):
            logger.debug(
                "Resolved upstream URL",
                extra=extra_context(
                    event="rewrite",
                    component="upstream",
                    action="build_request",
                    platform=platform_key,
                    target=safe_url(url),
                ),
            )
        return url, self._build_request_headers(headers)

    @asynccontextmanager
    async def open_response(
        self,
        url: str,
        method: str,
        headers: Dict[str, str],
        body: Optional[bytes],
    ):
        """Open an upstream response as an async context manager."""
        if self._session is None:
            await self.start()
        assert self._session is not None
        response = await self._request_with_redirects(url, method, headers, body)
        try:
            yield response
        finally:
            response.release()

    def _is_allowed_redirect(self, source_url: str, target_url: str) -> bool:
        """Validate redirect targets to prevent SSRF.

        Targets must stay on a registered origin host, a known download host
        of a registered platform (or a subdomain of either), or on the host
        that issued the redirect.
        """
        target = urllib.parse.urlparse(target_url)
        if target.scheme not in ("http", "https"):
            return False
        if not target.hostname:
            return False

        allowed_hosts = set(self._allowed_hosts)
        source_host = urllib.parse.urlparse(source_url).hostname
        if source_host:
            allowed_hosts.add(source_host.lower())

        target_host = target.hostname.lower()
        for host in allowed_hosts:
            if target_host == host or target_host.endswith(f".{host}"):
                return True
        return False

    async def _request_with_redirects(
        self,
        url: str,
        method: str,
        headers: Dict[str, str],
        body: Optional[bytes],
        max_redirects: int = Constants.MAX_REDIRECTS,
    ) -> aiohttp.ClientResponse:
        """Request URL while enforcing a redirect allowlist."""
        assert self._session is not None
        current_url = url
        current_method = method
        current_body = body

        for _ in range(max_redirects + 1):
            response = await self._session.request(
                current_method,
                current_url,
                headers=headers,
                data=current_body,
                allow_redirects=False,
            )

            if response.status not in _REDIRECT_STATUSES:
                return response

            location = response.headers.get("Location")
            if not location:
                return response

            next_url = urllib.parse.urljoin(current_url, location)
            if not self._is_allowed_redirect(current_url, next_url):
                response.release()
                logger.warning(
                    "Blocked upstream redirect",
                    extra=extra_context(
                        event="redirect_blocked",
                        component="upstream",
                        target=safe_url(next_url),
                    ),
                )
                raise aiohttp.ClientError("Redirect blocked by allowlist")

            # 303 forces GET per RFC; drop body.
            if response.status == 303:
                current_method = "GET"
                current_body = None
            # 301/302 are ambiguous about the method; only 307/308 preserve it.
            elif current_method not in ("GET", "HEAD") and response.status in (301, 302):
                response.release()
                raise aiohttp.ClientError("Redirect not allowed for non-GET/HEAD request")

            response.release()
            # Blob CDNs reject (and must not see) the registry's credentials.
            if urllib.parse.urlparse(next_url).hostname != urllib.parse.urlparse(current_url).hostname:
                headers = {k: v for k, v in headers.items() if k.lower() != "authorization"}
            current_url = next_url

        raise aiohttp.ClientError("Too many redirects")

    def _build_request_headers(
        self, headers: Optional[Dict[str, str]]
    ) -> Dict[str, str]:
        """Build request headers to send upstream."""
        request_headers: Dict[str, str] = {}

        connection_tokens = set()
        if headers:
            for k, v in headers.items():
                if k.lower() == "connection":
                    connection_tokens = {token.strip().lower() for token in v.split(",")}
                    break

        if headers:
            for key, value in headers.items():
                key_lower = key.lower()
                if key_lower in _HOP_BY_HOP or key_lower in connection_tokens:
                    continue
                request_headers[key] = value

        # Ensure defaults if caller didn't provide them.
        lower = {k.lower() for k in request_headers}
        if "user-agent" not in lower:
            request_headers["User-Agent"] = Constants.USER_AGENT
        if "accept" not in lower:
            request_headers["Accept"] = "*/*"

        return request_headers

    def filter_response_headers(self, headers: Dict[str, Any]) -> Dict[str, str]:
        """Filter response headers to forward to client.

        Args:
            headers: Raw response headers.

        Returns:
            Filtered headers dict.
        """
        filtered = {}
        for key, value in headers.items():
            canonical = _FORWARD_RESPONSE_HEADERS.get(key.lower())
            if canonical is not None:
                filtered[canonical] = str(value)
        return filtered

    async def __aenter__(self) -> "UpstreamClient":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
