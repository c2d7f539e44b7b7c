"""Platform registry mapping short platform keys to upstream origins."""

from __future__ import annotations

import re
import types
import urllib.parse
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Tuple, Union

_KEY_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

DEFAULT_PLATFORMS: Mapping[str, str] = types.MappingProxyType({
    # Source hosts
    "gh": "https://github.com",
    "gl": "https://gitlab.com",
    "gitea": "https://gitea.com",
    "codeberg": "https://codeberg.org",
    "sf": "https://sourceforge.net",
    "hf": "https://huggingface.co",
    # Language package indexes
    "npm": "https://registry.npmjs.org",
    "pypi": "https://pypi.org",
    "pypi-files": "https://files.pythonhosted.org",
    "conda": "https://repo.anaconda.com",
    "conda-community": "https://conda.anaconda.org",
    "maven": "https://repo1.maven.org",
    "gradle": "https://plugins.gradle.org",
    "rubygems": "https://rubygems.org",
    "cran": "https://cran.r-project.org",
    "golang": "https://proxy.golang.org",
    "nuget": "https://api.nuget.org",
    "crates": "https://crates.io",
    "packagist": "https://repo.packagist.org",
    # OS package mirrors
    "debian": "https://deb.debian.org",
    "ubuntu": "https://archive.ubuntu.com",
    "fedora": "https://dl.fedoraproject.org",
    "rocky": "https://download.rockylinux.org",
    "opensuse": "https://download.opensuse.org",
    "arch": "https://geo.mirror.pkgbuild.com",
    # Misc artifact hosts
    "arxiv": "https://arxiv.org",
    "fdroid": "https://f-droid.org",
    # Container registries
    "cr-docker": "https://registry-1.docker.io",
    "cr-quay": "https://quay.io",
    "cr-gcr": "https://gcr.io",
    "cr-mcr": "https://mcr.microsoft.com",
    "cr-ecr": "https://public.ecr.aws",
    "cr-ghcr": "https://ghcr.io",
    "cr-gitlab": "https://registry.gitlab.com",
    "cr-redhat": "https://registry.redhat.io",
    "cr-oracle": "https://container-registry.oracle.com",
    "cr-cloudsmith": "https://docker.cloudsmith.io",
    "cr-digitalocean": "https://registry.digitalocean.com",
    "cr-vmware": "https://projects.registry.vmware.com",
    "cr-k8s": "https://registry.k8s.io",
    "cr-heroku": "https://registry.heroku.com",
    "cr-suse": "https://registry.suse.com",
    "cr-opensuse": "https://registry.opensuse.org",
    "cr-gitpod": "https://registry.gitpod.io",
})

# Hosts outside the origin's own domain that a platform redirects downloads
# to (release assets, container blobs). Keyed by platform key.
DEFAULT_REDIRECT_HOSTS: Mapping[str, FrozenSet[str]] = types.MappingProxyType({
    "gh": frozenset({
        "objects.githubusercontent.com",
        "release-assets.githubusercontent.com",
    }),
    "hf": frozenset({"hf.co"}),
    "cr-docker": frozenset({"production.cloudflare.docker.com"}),
    "cr-gcr": frozenset({"storage.googleapis.com"}),
    "cr-ghcr": frozenset({"pkg-containers.githubusercontent.com"}),
    "cr-k8s": frozenset({"pkg.dev"}),
})


class PlatformConfigError(ValueError):
    """Raised when the platform table or rule table is inconsistent."""


def routing_prefix(key: str) -> str:
    """Return the client-facing path prefix for a platform key.

    ``cr-ghcr`` becomes ``/cr/ghcr/``.
    """
    return "/" + key.replace("-", "/") + "/"


@dataclass(frozen=True)
class PlatformEntry:
    """A single platform: its key and the upstream origin it maps to."""

    key: str
    origin: str

    @property
    def routing_prefix(self) -> str:
        return routing_prefix(self.key)

    @property
    def host(self) -> str:
        return urllib.parse.urlsplit(self.origin).hostname or ""


def validate_key(key: object) -> str:
    """Return ``key`` if it is a well-formed platform key, else raise."""
    if not isinstance(key, str) or not _KEY_PATTERN.match(key):
        raise PlatformConfigError(f"Invalid platform key: {key!r}")
    return key


def validate_origin(key: str, origin: object) -> str:
    """Return ``origin`` if it is a bare absolute http(s) origin, else raise."""
    if not isinstance(origin, str) or not origin:
        raise PlatformConfigError(f"Platform {key!r}: origin must be a non-empty string")
    try:
        parts = urllib.parse.urlsplit(origin)
        hostname = parts.hostname
        parts.port  # pylint: disable=pointless-statement
    except ValueError as exc:
        raise PlatformConfigError(f"Platform {key!r}: unparseable origin {origin!r}") from exc
    if parts.scheme not in ("http", "https"):
        raise PlatformConfigError(f"Platform {key!r}: origin {origin!r} must use http or https")
    if not hostname:
        raise PlatformConfigError(f"Platform {key!r}: origin {origin!r} has no host")
    if parts.username is not None or parts.password is not None:
        raise PlatformConfigError(f"Platform {key!r}: origin {origin!r} must not carry credentials")
    if parts.path or parts.query or parts.fragment or origin.endswith(("/", "?", "#")):
        raise PlatformConfigError(
            f"Platform {key!r}: origin {origin!r} must be scheme and host only"
        )
    return origin


class PlatformRegistry:
    """Immutable mapping from platform key to :class:`PlatformEntry`.

    Built once from a mapping or from ``(key, origin)`` pairs and validated up
    front; lookups never raise. Safe to share between concurrent requests.
    """

    def __init__(self, entries: Union[Mapping[str, str], Iterable[Tuple[str, str]]]):
        """Build and validate the registry.

        Args:
            entries: Mapping of key to origin, or an iterable of pairs.

        Raises:
            PlatformConfigError: On a malformed key or origin, or a duplicate key.
        """
        pairs = entries.items() if isinstance(entries, Mapping) else entries
        table: Dict[str, PlatformEntry] = {}
        for key, origin in pairs:
            validate_key(key)
            if key in table:
                raise PlatformConfigError(f"Duplicate platform key: {key!r}")
            table[key] = PlatformEntry(key=key, origin=validate_origin(key, origin))

        self._entries: Mapping[str, PlatformEntry] = types.MappingProxyType(table)
        self._keys: FrozenSet[str] = frozenset(table)
        # Longest prefix first so that ``cr-ghcr`` wins over a hypothetical ``cr``.
        self._by_prefix: Tuple[PlatformEntry, ...] = tuple(
            sorted(table.values(), key=lambda e: (-len(e.routing_prefix), e.key))
        )

    def lookup(self, key: object) -> Optional[PlatformEntry]:
        """Return the entry for ``key``, or None if it is not registered."""
        if not isinstance(key, str):
            return None
        return self._entries.get(key)

    def origin_for(self, key: object) -> Optional[str]:
        """Return the upstream origin for ``key``, or None."""
        entry = self.lookup(key)
        return entry.origin if entry else None

    def all_keys(self) -> FrozenSet[str]:
        return self._keys

    def entries(self) -> Tuple[PlatformEntry, ...]:
        """All entries, sorted by key."""
        return tuple(self._entries[k] for k in sorted(self._keys))

    def hosts(self) -> FrozenSet[str]:
        """Lower-cased hostnames of every registered origin."""
        return frozenset(e.host.lower() for e in self._entries.values() if e.host)

    def redirect_hosts(self) -> FrozenSet[str]:
        """Hosts upstream redirects may target: every origin host plus the
        download hosts in DEFAULT_REDIRECT_HOSTS for registered keys."""
        extra = set()
        for key in self._keys:
            extra.update(DEFAULT_REDIRECT_HOSTS.get(key, ()))
        return self.hosts() | frozenset(extra)

    def match(self, path: object) -> Optional[PlatformEntry]:
        """Return the platform whose routing prefix ``path`` starts with.

        When several prefixes overlap the longest one wins.
        """
        if not isinstance(path, str):
            return None
        for entry in self._by_prefix:
            if path.startswith(entry.routing_prefix):
                return entry
        return None

    def __contains__(self, key: object) -> bool:
        return self.lookup(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._keys))

    def __repr__(self) -> str:
        return f"PlatformRegistry({len(self)} platforms)"


def default_registry() -> PlatformRegistry:
    """Build a registry from the built-in platform table."""
    return PlatformRegistry(DEFAULT_PLATFORMS)
