"""Unified registry proxy server using aiohttp."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import web

from constants import Constants
from common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url

from .platforms import PlatformRegistry
from .request_parser import ParsedRequest, RequestParser
from .rewrite import PathRewriter, build_rewriter
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)


def _arg_or(args: Any, name: str, default: Any) -> Any:
    """Return the CLI argument, or ``default`` when it was not given."""
    value = getattr(args, name, None)
    return default if value is None else value


@dataclass
class ProxyConfig:
    """Configuration for the proxy server."""

    host: str = Constants.PROXY_HOST
    port: int = Constants.PROXY_PORT
    timeout: int = Constants.REQUEST_TIMEOUT
    allow_external: bool = False
    platforms: Dict[str, Optional[str]] = field(default_factory=dict)
    rules: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_args(cls, args: Any) -> "ProxyConfig":
        """Create config from CLI arguments.

        Args:
            args: Parsed CLI arguments namespace.

        Returns:
            ProxyConfig instance.
        """
        return cls(
            host=_arg_or(args, "PROXY_HOST", Constants.PROXY_HOST),
            port=_arg_or(args, "PROXY_PORT", Constants.PROXY_PORT),
            timeout=_arg_or(args, "PROXY_TIMEOUT", Constants.REQUEST_TIMEOUT),
            allow_external=bool(getattr(args, "PROXY_ALLOW_EXTERNAL", False)),
        )

    def build_rewriter(self) -> PathRewriter:
        """Merge configured platforms and rules over the built-in tables.

        Raises:
            PlatformConfigError: If the merged configuration is invalid.
        """
        return build_rewriter(self.platforms, self.rules)


class RegistryProxyServer:
    """HTTP proxy server fronting many registries under one path namespace.

    Requests of the form ``/{key-as-path}/{rest}`` are rewritten to the
    platform's upstream origin and the response is streamed back.
    """

    def __init__(self, config: ProxyConfig):
        """Initialize the proxy server.

        Args:
            config: Server configuration.

        Raises:
            PlatformConfigError: If the platform or rule configuration is invalid.
        """
        self._config = config
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None

        self._rewriter = config.build_rewriter()
        self._registry = self._rewriter.registry
        self._parser = RequestParser(self._registry)
        self._upstream = UpstreamClient(self._rewriter, timeout=config.timeout)

    @property
    def registry(self) -> PlatformRegistry:
        return self._registry

    @property
    def rewriter(self) -> PathRewriter:
        return self._rewriter

    def _create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application(client_max_size=Constants.CLIENT_MAX_SIZE)
        app.router.add_get(Constants.HEALTH_PATH, self._health_check)
        app.router.add_get(Constants.PLATFORMS_PATH, self._list_platforms)
        app.router.add_route("*", "/{path:.*}", self._handle_request)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            "status": "ok",
            "platforms": len(self._registry),
        })

    async def _list_platforms(self, request: web.Request) -> web.Response:
        """List every platform key with its origin and routing prefix."""
        return web.json_response({
            entry.key: {
                "origin": entry.origin,
                "prefix": entry.routing_prefix,
                "rule": self._rewriter.rule_for(entry.key).kind.value,
            }
            for entry in self._registry.entries()
        })

    async def _on_startup(self, app: web.Application) -> None:
        """Called when the server starts."""
        await self._upstream.start()
        logger.info("Proxy server starting on %s:%s", self._config.host, self._config.port)

    async def _on_cleanup(self, app: web.Application) -> None:
        """Called when the server stops."""
        await self._upstream.stop()
        logger.info("Proxy server stopped")

    async def _handle_request(self, request: web.Request) -> web.StreamResponse:
        """Handle incoming proxy requests.

        Args:
            request: Incoming HTTP request.

        Returns:
            HTTP response.
        """
        parsed = self._parser.parse(request.rel_url.raw_path_qs)

        if not parsed.is_known:
            logger.info("Unknown platform for path: %s", parsed.path)
            return self._error_response(404, "Unknown platform", parsed)

        return await self._forward_request(request, parsed)

    async def _forward_request(
        self,
        request: web.Request,
        parsed: ParsedRequest,
    ) -> web.StreamResponse:
        """Forward request to the platform's upstream and stream the reply.

        Args:
            request: Original request.
            parsed: Parsed request carrying the platform key.

        Returns:
            Response from upstream, or a 5xx JSON error.
        """
        assert parsed.platform_key is not None
        url, headers = self._upstream.build_request(
            parsed.platform_key,
            parsed.target,
            dict(request.headers),
        )

        body = None
        if request.body_exists:
            body = await request.read()

        logger.info("%s %s -> %s", request.method, parsed.path, safe_url(url))

        response: Optional[web.StreamResponse] = None
        with Timer() as timer:
            try:
                async with self._upstream.open_response(
                    url, request.method, headers, body
                ) as upstream_response:
                    response = web.StreamResponse(
                        status=upstream_response.status,
                        headers=self._upstream.filter_response_headers(
                            dict(upstream_response.headers)
                        ),
                    )
                    await response.prepare(request)
                    async for chunk in upstream_response.content.iter_chunked(
                        Constants.STREAM_CHUNK_SIZE
                    ):
                        await response.write(chunk)
                    await response.write_eof()
            except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
                if response is not None and response.prepared:
                    # Headers already sent; the client sees a truncated body.
                    logger.warning("Upstream failed mid-stream: %s (%r)", safe_url(url), exc)
                    return response
                if not isinstance(exc, asyncio.TimeoutError):
                    logger.warning("Upstream request failed: %s (%s)", safe_url(url), exc)
                    return self._error_response(502, "Upstream request failed", parsed)
                logger.warning("Upstream timed out: %s", safe_url(url))
                return self._error_response(504, "Upstream request timed out", parsed)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Unexpected error proxying %s", safe_url(url))
                if response is not None and response.prepared:
                    return response
                return self._error_response(500, "Internal proxy error", parsed)

        if is_debug_enabled(logger):
            logger.debug(
                "Upstream response streamed",
                extra=extra_context(
                    event="http_response",
                    component="server",
                    action=request.method,
                    platform=parsed.platform_key,
                    status_code=upstream_response.status,
                    duration_ms=timer.duration_ms(),
                    target=safe_url(url),
                ),
            )
        return response

    def _error_response(self, status: int, error: str, parsed: ParsedRequest) -> web.Response:
        """Create a JSON error response."""
        return web.json_response(
            {
                "error": error,
                "platform": parsed.platform_key,
                "path": parsed.path,
            },
            status=status,
        )

    async def start(self) -> None:
        """Start the proxy server."""
        self._app = self._create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(
            self._runner,
            self._config.host,
            self._config.port,
        )
        await site.start()

        logger.info(
            "unigate proxy server listening on http://%s:%s",
            self._config.host, self._config.port,
        )
        logger.info("Platforms registered: %d", len(self._registry))
        for key, rule in sorted(self._rewriter.rules.items()):
            logger.info("Rewrite rule: %s -> %s", key, rule.kind.value)

    async def stop(self) -> None:
        """Stop the proxy server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None


def run_proxy_server_sync(config: ProxyConfig) -> None:
    """Run the proxy server synchronously.

    Installs signal handlers for SIGTERM and SIGINT for clean shutdown.

    Args:
        config: Server configuration.
    """
    server = RegistryProxyServer(config)
    loop = asyncio.new_event_loop()

    async def run():
        try:
            await server.start()
        except OSError:
            await server.stop()
            raise
        stop_event = asyncio.Event()
        running_loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            running_loop.add_signal_handler(sig, stop_event.set)
        await stop_event.wait()
        logger.info("Shutdown signal received, stopping...")
        await server.stop()

    try:
        loop.run_until_complete(run())
    except KeyboardInterrupt:
        # Fallback for platforms where signal handlers don't work (Windows)
        loop.run_until_complete(server.stop())
    finally:
        loop.close()
        logger.info("Proxy server shutdown complete")

