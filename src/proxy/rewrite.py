"""Path rewrite engine: inbound ``/{key}/...`` paths to upstream paths."""

from __future__ import annotations

import types
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Tuple

from .platforms import DEFAULT_PLATFORMS, PlatformConfigError, PlatformRegistry, routing_prefix


class RuleKind(Enum):
    """Structural rewrite variants applied after the routing prefix is stripped."""

    IDENTITY = "identity"
    API_NAMESPACE = "api-namespace"
    DOCKER_LIBRARY = "docker-library"


@dataclass(frozen=True)
class RewriteRule:
    """A structural rewrite for one platform.

    ``namespace`` is only meaningful for :attr:`RuleKind.API_NAMESPACE`.
    """

    kind: RuleKind
    namespace: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.kind, RuleKind):
            raise PlatformConfigError(f"Unknown rewrite rule kind: {self.kind!r}")
        if self.kind == RuleKind.API_NAMESPACE:
            ns = self.namespace
            if not isinstance(ns, str) or not ns.startswith("/") or len(ns) < 2 or ns.endswith("/"):
                raise PlatformConfigError(
                    f"API namespace must start with '/' and not end with '/': {ns!r}"
                )
            if any(c in ns for c in "?#"):
                raise PlatformConfigError(f"API namespace must be a plain path: {ns!r}")

    @classmethod
    def from_config(cls, value: object) -> "RewriteRule":
        """Build a rule from a config value: a kind name or ``{kind, namespace}``."""
        if isinstance(value, str):
            kind_name, namespace = value, ""
        elif isinstance(value, Mapping):
            kind_name = value.get("kind", "")
            namespace = value.get("namespace", "")
        else:
            raise PlatformConfigError(f"Invalid rewrite rule: {value!r}")
        try:
            kind = RuleKind(str(kind_name).lower())
        except ValueError as exc:
            raise PlatformConfigError(f"Unknown rewrite rule kind: {kind_name!r}") from exc
        return cls(kind=kind, namespace=namespace or "")


CRATES_API_NAMESPACE = "/api/v1/crates"

DEFAULT_RULES: Mapping[str, RewriteRule] = types.MappingProxyType({
    "crates": RewriteRule(RuleKind.API_NAMESPACE, CRATES_API_NAMESPACE),
    "cr-docker": RewriteRule(RuleKind.DOCKER_LIBRARY),
})

# Registry v2 resource segments that follow an image name.
_DOCKER_RESOURCES = frozenset({"manifests", "blobs", "tags"})


def split_suffix(path: str) -> Tuple[str, str]:
    """Split ``path`` at the first ``?`` or ``#`` into (path, suffix)."""
    for i, char in enumerate(path):
        if char in "?#":
            return path[:i], path[i:]
    return path, ""


def strip_prefix(path: str, prefix: str) -> str:
    """Remove a literal, start-anchored ``prefix`` leaving exactly one leading '/'.

    A path that does not start with ``prefix`` is returned unchanged.
    """
    if not path.startswith(prefix):
        return path
    rest = path[len(prefix):]
    return rest if rest.startswith("/") else "/" + rest


def inject_namespace(remainder: str, namespace: str) -> str:
    """Place ``namespace`` in front of ``remainder`` without a doubled slash."""
    if remainder == "" or remainder[0] in "?#":
        return namespace + remainder
    if not remainder.startswith("/"):
        return remainder
    if remainder == "/" or remainder[1] in "?#":
        return namespace + remainder[1:]
    return namespace + remainder


def docker_library(remainder: str) -> str:
    """Qualify single-segment Docker Hub image names with ``library/``."""
    path, suffix = split_suffix(remainder)
    parts = path.split("/")
    # ['', 'v2', '<name>', 'manifests', '<ref>']
    if len(parts) == 5 and parts[1] == "v2" and parts[2] and parts[3] in _DOCKER_RESOURCES:
        parts.insert(2, "library")
        return "/".join(parts) + suffix
    return remainder


class PathRewriter:
    """Rewrites inbound request paths into upstream request paths.

    The registry and rule table are injected and never mutated, so a single
    instance can serve any number of concurrent requests.
    """

    def __init__(
        self,
        registry: PlatformRegistry,
        rules: Optional[Mapping[str, RewriteRule]] = None,
    ):
        """Initialize the rewriter.

        Args:
            registry: Platform registry consulted for key validity and origins.
            rules: Structural rules by platform key. Defaults to DEFAULT_RULES,
                restricted to keys present in ``registry``.

        Raises:
            PlatformConfigError: If an explicit rule names an unregistered key.
        """
        self._registry = registry
        if rules is None:
            table = {k: r for k, r in DEFAULT_RULES.items() if k in registry}
        else:
            table = {}
            for key, rule in rules.items():
                if key not in registry:
                    raise PlatformConfigError(f"Rewrite rule for unknown platform: {key!r}")
                if not isinstance(rule, RewriteRule):
                    raise PlatformConfigError(f"Invalid rewrite rule for {key!r}: {rule!r}")
                if rule.kind != RuleKind.IDENTITY:
                    table[key] = rule
        self._rules: Mapping[str, RewriteRule] = types.MappingProxyType(table)

    @property
    def registry(self) -> PlatformRegistry:
        return self._registry

    @property
    def rules(self) -> Mapping[str, RewriteRule]:
        return self._rules

    def rule_for(self, key: str) -> RewriteRule:
        return self._rules.get(key, RewriteRule(RuleKind.IDENTITY))

    def rewrite(self, path: str, key: str) -> str:
        """Return the upstream path for ``path`` under platform ``key``.

        Unknown keys (and non-string input) leave ``path`` untouched. Query
        strings and fragments are carried through unchanged.
        """
        if not isinstance(path, str) or self._registry.lookup(key) is None:
            return path
        stripped = strip_prefix(path, routing_prefix(key))
        return self._apply_rule(self.rule_for(key), stripped)

    def resolve(self, path: str, key: str) -> Optional[str]:
        """Return ``origin + rewrite(path, key)``, or None for an unknown key."""
        origin = self._registry.origin_for(key)
        if origin is None or not isinstance(path, str):
            return None
        return origin + self.rewrite(path, key)

    @staticmethod
    def _apply_rule(rule: RewriteRule, remainder: str) -> str:
        if rule.kind == RuleKind.API_NAMESPACE:
            return inject_namespace(remainder, rule.namespace)
        if rule.kind == RuleKind.DOCKER_LIBRARY:
            return docker_library(remainder)
        return remainder


def build_rewriter(
    platforms: Optional[Mapping[str, Optional[str]]] = None,
    rules: Optional[Mapping[str, object]] = None,
) -> PathRewriter:
    """Build a rewriter from the built-in tables plus configured overrides.

    Args:
        platforms: Extra or replacement origins by key; a None origin removes
            a built-in platform.
        rules: Rules by key, as :class:`RewriteRule` or config values
            (see :meth:`RewriteRule.from_config`). ``identity`` drops a
            built-in rule.

    Raises:
        PlatformConfigError: If the merged configuration is invalid.
    """
    merged = dict(DEFAULT_PLATFORMS)
    for key, origin in (platforms or {}).items():
        if origin is None:
            merged.pop(key, None)
        else:
            merged[key] = origin
    registry = PlatformRegistry(merged)

    table = {key: rule for key, rule in DEFAULT_RULES.items() if key in registry}
    for key, value in (rules or {}).items():
        table[key] = value if isinstance(value, RewriteRule) else RewriteRule.from_config(value)
    return PathRewriter(registry, table)
