"""Tests for the path rewrite engine."""

import string
import urllib.parse

import pytest

from src.proxy.platforms import (
    DEFAULT_PLATFORMS,
    PlatformConfigError,
    PlatformRegistry,
    default_registry,
    routing_prefix,
)
from src.proxy.rewrite import (
    DEFAULT_RULES,
    PathRewriter,
    RewriteRule,
    RuleKind,
    build_rewriter,
    inject_namespace,
    split_suffix,
    strip_prefix,
)


@pytest.fixture(scope="module")
def rewriter():
    return PathRewriter(default_registry())


class TestGenericPrefixStrip:
    """Prefix stripping for platforms without a structural rule."""

    @pytest.mark.parametrize("path, key, expected", [
        ("/gh/microsoft/vscode/archive/main.zip", "gh", "/microsoft/vscode/archive/main.zip"),
        ("/gh/user/repo.git", "gh", "/user/repo.git"),
        ("/gl/gitlab-org/gitlab/-/archive/master/gitlab-master.zip", "gl",
         "/gitlab-org/gitlab/-/archive/master/gitlab-master.zip"),
        ("/sf/projects/sevenzip/files/7-Zip/23.01/7z2301-x64.exe/download", "sf",
         "/projects/sevenzip/files/7-Zip/23.01/7z2301-x64.exe/download"),
        ("/gitea/gitea/gitea/archive/master.zip", "gitea", "/gitea/gitea/archive/master.zip"),
        ("/codeberg/forgejo/forgejo/archive/forgejo.zip", "codeberg", "/forgejo/forgejo/archive/forgejo.zip"),
        ("/hf/microsoft/DialoGPT-medium/resolve/main/config.json", "hf",
         "/microsoft/DialoGPT-medium/resolve/main/config.json"),
        ("/hf/datasets/squad/resolve/main/train.json", "hf", "/datasets/squad/resolve/main/train.json"),
        ("/npm/react/-/react-18.2.0.tgz", "npm", "/react/-/react-18.2.0.tgz"),
        ("/npm/lodash", "npm", "/lodash"),
        ("/pypi/packages/source/r/requests/requests-2.31.0.tar.gz", "pypi",
         "/packages/source/r/requests/requests-2.31.0.tar.gz"),
        ("/pypi/simple/requests/", "pypi", "/simple/requests/"),
        ("/pypi/files/packages/source/r/requests/requests-2.31.0.tar.gz", "pypi-files",
         "/packages/source/r/requests/requests-2.31.0.tar.gz"),
        ("/conda/pkgs/main/linux-64/numpy-1.24.3.conda", "conda", "/pkgs/main/linux-64/numpy-1.24.3.conda"),
        ("/conda/community/conda-forge/linux-64/repodata.json", "conda-community",
         "/conda-forge/linux-64/repodata.json"),
        ("/cr/ghcr/v2/nginxinc/nginx-unprivileged/manifests/latest", "cr-ghcr",
         "/v2/nginxinc/nginx-unprivileged/manifests/latest"),
        ("/cr/gcr/v2/distroless/base/manifests/latest", "cr-gcr", "/v2/distroless/base/manifests/latest"),
    ])
    def test_platform_paths(self, rewriter, path, key, expected):
        assert rewriter.rewrite(path, key) == expected

    @pytest.mark.parametrize("key", [
        "cr-quay", "cr-gcr", "cr-mcr", "cr-ecr", "cr-ghcr", "cr-gitlab", "cr-redhat",
        "cr-oracle", "cr-cloudsmith", "cr-digitalocean", "cr-vmware", "cr-k8s",
        "cr-heroku", "cr-suse", "cr-opensuse", "cr-gitpod",
    ])
    def test_container_registry_paths(self, rewriter, key):
        path = "/" + key.replace("cr-", "cr/") + "/v2/test/image/manifests/latest"
        assert rewriter.rewrite(path, key) == "/v2/test/image/manifests/latest"

    def test_remainder_without_leading_slash(self, rewriter):
        assert rewriter.rewrite(routing_prefix("npm") + "lodash", "npm") == "/lodash"

    def test_remainder_with_leading_slash_not_doubled(self, rewriter):
        assert rewriter.rewrite(routing_prefix("npm") + "/lodash", "npm") == "/lodash"
        assert rewriter.rewrite(routing_prefix("gh") + "//x", "gh") == "//x"

    def test_bare_prefix_becomes_root(self, rewriter):
        assert rewriter.rewrite("/gh/", "gh") == "/"

    def test_query_and_fragment_pass_through(self, rewriter):
        assert rewriter.rewrite("/gh/user/repo/file.txt?ref=main", "gh") == "/user/repo/file.txt?ref=main"
        assert rewriter.rewrite("/gh/user/repo/README.md#section", "gh") == "/user/repo/README.md#section"
        assert rewriter.rewrite("/gh/a?x=/gh/b#/gh/c", "gh") == "/a?x=/gh/b#/gh/c"

    def test_unprefixed_path_left_unchanged(self, rewriter):
        assert rewriter.rewrite("/some/random/path", "gh") == "/some/random/path"
        assert rewriter.rewrite("/microsoft/vscode", "gh") == "/microsoft/vscode"

    def test_prefix_only_stripped_at_start(self, rewriter):
        assert rewriter.rewrite("/x/gh/y", "gh") == "/x/gh/y"

    def test_prefix_stripped_once(self, rewriter):
        assert rewriter.rewrite("/gh/gh/repo", "gh") == "/gh/repo"

    def test_prefix_is_literal(self):
        """Characters that are special in patterns only match themselves."""
        registry = PlatformRegistry({"a1": "https://a.example", "a": "https://b.example"})
        rw = PathRewriter(registry, {})
        assert rw.rewrite("/aX/path", "a1") == "/aX/path"
        assert rw.rewrite("/a1/path", "a1") == "/path"
        assert strip_prefix("/a.b/x", "/a.b/") == "/x"
        assert strip_prefix("/aXb/x", "/a.b/") == "/aXb/x"
        assert strip_prefix("/a+/x", "/a+/") == "/x"


class TestUnknownPlatform:
    """Unknown keys are an identity passthrough."""

    def test_unknown_key_identity(self, rewriter):
        assert rewriter.rewrite("/unknown/test/path", "unknown") == "/unknown/test/path"

    @pytest.mark.parametrize("key", ["", "GH", "cr/ghcr", "gh ", None, 3])
    def test_odd_keys_identity(self, rewriter, key):
        assert rewriter.rewrite("/gh/user/repo", key) == "/gh/user/repo"

    def test_resolve_unknown_returns_none(self, rewriter):
        assert rewriter.resolve("/unknown/x", "unknown") is None


class TestCratesRule:
    """crates.io needs the /api/v1/crates namespace injected."""

    @pytest.mark.parametrize("path, expected", [
        ("/crates/", "/api/v1/crates"),
        ("/crates/?q=serde", "/api/v1/crates?q=serde"),
        ("/crates/serde", "/api/v1/crates/serde"),
        ("/crates/serde/1.0.0/download", "/api/v1/crates/serde/1.0.0/download"),
        ("/", "/api/v1/crates"),
        ("/?q=serde", "/api/v1/crates?q=serde"),
        ("/serde/1.0.0/download", "/api/v1/crates/serde/1.0.0/download"),
        ("", "/api/v1/crates"),
        ("/crates/#top", "/api/v1/crates#top"),
    ])
    def test_namespace_injection(self, rewriter, path, expected):
        assert rewriter.rewrite(path, "crates") == expected

    def test_never_duplicates_namespace_slash(self, rewriter):
        for path in ["/crates/", "/", "", "/?q=a", "/crates/?q=a"]:
            assert "crates/?" not in rewriter.rewrite(path, "crates")
            assert not rewriter.rewrite(path, "crates").startswith("/api/v1/crates/?")

    def test_resolve(self, rewriter):
        assert rewriter.resolve("/crates/serde", "crates") == "https://crates.io/api/v1/crates/serde"


class TestInjectNamespace:
    """Direct checks of the namespace-injection helper."""

    @pytest.mark.parametrize("remainder, expected", [
        ("", "/ns"),
        ("/", "/ns"),
        ("/?a=1", "/ns?a=1"),
        ("/#f", "/ns#f"),
        ("?a=1", "/ns?a=1"),
        ("/x", "/ns/x"),
        ("/x?y", "/ns/x?y"),
        ("not-a-path", "not-a-path"),
    ])
    def test_cases(self, remainder, expected):
        assert inject_namespace(remainder, "/ns") == expected


class TestDockerLibraryRule:
    """Docker Hub official images live under library/."""

    def test_single_segment_image_gets_library(self, rewriter):
        assert rewriter.rewrite("/cr/docker/v2/nginx/manifests/latest", "cr-docker") == \
            "/v2/library/nginx/manifests/latest"

    def test_blobs_and_tags(self, rewriter):
        assert rewriter.rewrite("/cr/docker/v2/busybox/blobs/sha256:abc", "cr-docker") == \
            "/v2/library/busybox/blobs/sha256:abc"
        assert rewriter.rewrite("/cr/docker/v2/alpine/tags/list?n=10", "cr-docker") == \
            "/v2/library/alpine/tags/list?n=10"

    def test_namespaced_image_unchanged(self, rewriter):
        assert rewriter.rewrite("/cr/docker/v2/bitnami/redis/manifests/7", "cr-docker") == \
            "/v2/bitnami/redis/manifests/7"

    def test_v2_root_unchanged(self, rewriter):
        assert rewriter.rewrite("/cr/docker/v2/", "cr-docker") == "/v2/"


class TestRuleTable:
    """Rule table construction and validation."""

    def test_defaults(self):
        assert DEFAULT_RULES["crates"] == RewriteRule(RuleKind.API_NAMESPACE, "/api/v1/crates")
        assert DEFAULT_RULES["cr-docker"].kind == RuleKind.DOCKER_LIBRARY

    def test_default_rules_skip_missing_platforms(self):
        registry = PlatformRegistry({"gh": "https://github.com"})
        assert dict(PathRewriter(registry).rules) == {}

    def test_rule_for_unknown_platform_rejected(self):
        registry = PlatformRegistry({"gh": "https://github.com"})
        with pytest.raises(PlatformConfigError):
            PathRewriter(registry, {"crates": DEFAULT_RULES["crates"]})

    def test_identity_rule_dropped(self):
        rw = PathRewriter(default_registry(), {"crates": RewriteRule(RuleKind.IDENTITY)})
        assert "crates" not in rw.rules
        assert rw.rewrite("/crates/serde", "crates") == "/serde"

    @pytest.mark.parametrize("namespace", ["", "/", "api", "/api/", "/api?x", "/a#b"])
    def test_bad_namespace_rejected(self, namespace):
        with pytest.raises(PlatformConfigError):
            RewriteRule(RuleKind.API_NAMESPACE, namespace)

    def test_from_config(self):
        assert RewriteRule.from_config("docker-library") == RewriteRule(RuleKind.DOCKER_LIBRARY)
        assert RewriteRule.from_config({"kind": "api-namespace", "namespace": "/api/v2"}) == \
            RewriteRule(RuleKind.API_NAMESPACE, "/api/v2")
        with pytest.raises(PlatformConfigError):
            RewriteRule.from_config("shell-hook")
        with pytest.raises(PlatformConfigError):
            RewriteRule.from_config(42)

    def test_rules_are_read_only(self, rewriter):
        with pytest.raises(TypeError):
            rewriter.rules["gh"] = RewriteRule(RuleKind.IDENTITY)  # type: ignore[index]


class TestBuildRewriter:
    """Merging configured overrides over the built-in tables."""

    def test_defaults(self):
        rw = build_rewriter()
        assert rw.registry.all_keys() == frozenset(DEFAULT_PLATFORMS)
        assert set(rw.rules) == set(DEFAULT_RULES)

    def test_add_platform_with_rule(self):
        rw = build_rewriter(
            {"internal": "https://artifacts.example.com"},
            {"internal": {"kind": "api-namespace", "namespace": "/api/v2/packages"}},
        )
        assert rw.resolve("/internal/foo", "internal") == \
            "https://artifacts.example.com/api/v2/packages/foo"

    def test_remove_platform_drops_its_rule(self):
        rw = build_rewriter({"crates": None})
        assert "crates" not in rw.registry
        assert "crates" not in rw.rules

    def test_override_origin(self):
        rw = build_rewriter({"npm": "https://npm.mirror.example"})
        assert rw.resolve("/npm/lodash", "npm") == "https://npm.mirror.example/lodash"

    def test_invalid_override_rejected(self):
        with pytest.raises(PlatformConfigError):
            build_rewriter({"npm": "https://npm.mirror.example/registry"})


class TestProperties:
    """Totality and URL validity over every platform."""

    SAMPLE_PATHS = [
        "",
        "/",
        "?",
        "#",
        "/some/random/path",
        "/unknown/test/path",
        "/?q=serde",
        "/a b/c",
        "//double",
        "/" + string.punctuation,
        string.printable,
    ]

    def test_total_for_all_keys(self, rewriter):
        keys = list(DEFAULT_PLATFORMS) + ["", "unknown", "cr", "CR-GHCR"]
        for key in keys:
            for path in self.SAMPLE_PATHS + [routing_prefix(key) + "x"] if key else self.SAMPLE_PATHS:
                assert isinstance(rewriter.rewrite(path, key), str)

    def test_identity_for_unregistered_keys(self, rewriter):
        for path in self.SAMPLE_PATHS:
            assert rewriter.rewrite(path, "not-registered") == path

    def test_non_string_path_returned_as_is(self, rewriter):
        assert rewriter.rewrite(None, "gh") is None  # type: ignore[arg-type]

    def test_constructed_urls_are_valid(self, rewriter):
        for key, origin in DEFAULT_PLATFORMS.items():
            for rest in ["test/path", "", "v2/x/manifests/latest?a=1"]:
                url = rewriter.resolve(routing_prefix(key) + rest, key)
                parts = urllib.parse.urlsplit(url)
                assert url.startswith(origin)
                assert parts.scheme == "https"
                assert parts.hostname == urllib.parse.urlsplit(origin).hostname
                assert parts.path.startswith("/")

    def test_container_url_construction(self, rewriter):
        url = rewriter.resolve("/cr/ghcr/v2/nginxinc/nginx-unprivileged/manifests/latest", "cr-ghcr")
        assert url == "https://ghcr.io/v2/nginxinc/nginx-unprivileged/manifests/latest"


def test_split_suffix():
    assert split_suffix("/a/b?c#d") == ("/a/b", "?c#d")
    assert split_suffix("/a#d?c") == ("/a", "#d?c")
    assert split_suffix("/a") == ("/a", "")
