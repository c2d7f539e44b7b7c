"""unigate proxy package.

This package maps short platform keys (``gh``, ``npm``, ``cr-ghcr``...) to
upstream registry origins, rewrites inbound ``/{key}/...`` paths into the form
each upstream expects, and serves the result through an aiohttp proxy.
"""

from .platforms import (
    DEFAULT_PLATFORMS,
    DEFAULT_REDIRECT_HOSTS,
    PlatformConfigError,
    PlatformEntry,
    PlatformRegistry,
    default_registry,
    routing_prefix,
)
from .rewrite import DEFAULT_RULES, PathRewriter, RewriteRule, RuleKind, build_rewriter
from .request_parser import ParsedRequest, RequestParser

__all__ = [
    "DEFAULT_PLATFORMS",
    "DEFAULT_REDIRECT_HOSTS",
    "DEFAULT_RULES",
    "PlatformConfigError",
    "PlatformEntry",
    "PlatformRegistry",
    "default_registry",
    "routing_prefix",
    "PathRewriter",
    "RewriteRule",
    "RuleKind",
    "build_rewriter",
    "ParsedRequest",
    "RequestParser",
]
