"""Request parser for extracting the platform key from inbound proxy paths."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .platforms import PlatformRegistry
from .rewrite import split_suffix


@dataclass
class ParsedRequest:
    """Result of parsing an inbound request target."""

    platform_key: Optional[str]
    raw_path: str = ""
    path: str = ""
    query: str = ""
    fragment: str = ""
    suffix: str = ""

    @property
    def is_known(self) -> bool:
        return self.platform_key is not None

    @property
    def target(self) -> str:
        """Normalized request target handed to the rewrite engine."""
        return self.path + self.suffix


class RequestParser:
    """Parser mapping ``/{key-as-path}/...`` request targets to platform keys.

    Multi-segment keys appear in the URL with ``-`` replaced by ``/``, so
    ``/cr/ghcr/v2/...`` selects ``cr-ghcr``. Overlapping prefixes resolve to
    the longest one.
    """

    def __init__(self, registry: PlatformRegistry):
        """Initialize the request parser.

        Args:
            registry: Registry providing the routing prefixes.
        """
        self._registry = registry

    def parse(self, path_qs: str) -> ParsedRequest:
        """Parse a request target (path plus optional query/fragment).

        Args:
            path_qs: The raw request target.

        Returns:
            ParsedRequest; ``platform_key`` is None when no platform matches.
        """
        if not isinstance(path_qs, str):
            return ParsedRequest(platform_key=None)

        path, suffix = split_suffix(path_qs)
        query = fragment = ""
        if suffix.startswith("?"):
            query, _, fragment = suffix[1:].partition("#")
        elif suffix.startswith("#"):
            fragment = suffix[1:]

        entry = self._registry.match(path)
        if entry is None and path and not path.endswith("/"):
            # "/npm" (no trailing slash) still names the npm platform
            entry = self._registry.match(path + "/")
            if entry is not None:
                path += "/"

        return ParsedRequest(
            platform_key=entry.key if entry else None,
            raw_path=path_qs,
            path=path,
            query=query,
            fragment=fragment,
            suffix=suffix,
        )
