"""Tests for the permission synthesizer."""

import dataclasses

import pytest

from scriptext.metadata import ScriptMetadata
from scriptext.permissions import (
    ALL_ORIGINS,
    PermissionSet,
    connect_patterns,
    grant_permission,
    injection_matches,
    normalize_include,
    normalize_match,
    synthesize_permissions,
)


class TestNormalizeMatch:

    @pytest.mark.parametrize("pattern", [
        "http://example.com/*",
        "https://example.com/path/*",
        "*://*.example.com/*",
    ])
    def test_explicit_scheme_unchanged(self, pattern):
        assert normalize_match(pattern) == pattern

    @pytest.mark.parametrize("pattern", ["example.com/*", "*.example.com/*", "localhost/x"])
    def test_missing_scheme_gets_wildcard(self, pattern):
        assert normalize_match(pattern) == "*://" + pattern


class TestNormalizeInclude:

    @pytest.mark.parametrize("glob,expected", [
        ("http*://example.com", "*://example.com/*"),
        ("http*://example.com/*", "*://example.com/*"),
        ("example.com/path/", "*://example.com/path/*"),
        ("example.com", "*://example.com/*"),
        ("https://example.com/a", "https://example.com/a/*"),
        ("*://example.com/*", "*://example.com/*"),
        ("*", "*://*"),
    ])
    def test_rewrites(self, glob, expected):
        assert normalize_include(glob) == expected

    def test_result_always_ends_with_wildcard(self):
        for glob in ["a.com", "a.com/", "http*://a.com/x", "https://a.com/x/"]:
            assert normalize_include(glob).endswith("*")


class TestConnect:

    def test_wildcards_expand_to_all_origins(self):
        meta = ScriptMetadata()
        assert connect_patterns("*", meta) == [ALL_ORIGINS]
        assert connect_patterns("*.*", meta) == [ALL_ORIGINS]

    def test_domain_adds_exact_and_subdomains(self):
        assert connect_patterns("api.example.net", ScriptMetadata()) == [
            "*://api.example.net/*",
            "*://*.api.example.net/*",
        ]

    def test_wildcard_prefixed_domain_not_doubled(self):
        assert connect_patterns("*.example.net", ScriptMetadata()) == ["*://*.example.net/*"]

    def test_empty_skipped(self):
        assert connect_patterns("", ScriptMetadata()) == []

    def test_self_adds_nothing_new(self):
        meta = ScriptMetadata(
            name="X",
            matches=["example.com/*", "https://a.org/*"],
            includes=["http*://legacy.net"],
        )
        without_self = set(synthesize_permissions(meta).host_patterns)
        meta.connect.append("self")
        with_self = set(synthesize_permissions(meta).host_patterns)

        assert with_self == without_self


class TestSynthesizePermissions:

    def test_scenario_foo(self):
        """name Foo + match example.com/* → one wildcard-scheme pattern, no API permissions."""
        perms = synthesize_permissions(ScriptMetadata(name="Foo", matches=["example.com/*"]))

        assert perms.host_patterns == ("*://example.com/*",)
        assert perms.api_permissions == ()

    def test_duplicate_match_yields_one_pattern(self):
        perms = synthesize_permissions(ScriptMetadata(matches=["a.com/*", "a.com/*", "*://a.com/*"]))

        assert perms.host_patterns == ("*://a.com/*",)

    def test_rule_order_and_union(self):
        meta = ScriptMetadata(
            matches=["https://a.com/*"],
            includes=["b.com"],
            connect=["c.net", "*"],
        )
        perms = synthesize_permissions(meta)

        assert perms.host_patterns == (
            "https://a.com/*",
            "*://b.com/*",
            "*://c.net/*",
            "*://*.c.net/*",
            ALL_ORIGINS,
        )

    def test_deterministic(self, sample_script):
        from scriptext.metadata import parse_metadata

        meta = parse_metadata(sample_script)
        assert synthesize_permissions(meta) == synthesize_permissions(meta)

    def test_grants_map_through_table(self):
        meta = ScriptMetadata(grants=[
            "GM_setValue", "GM_getValue", "GM_download",
            "GM_notification", "GM_setClipboard", "GM_listValues",
        ])
        perms = synthesize_permissions(meta)

        assert perms.api_permissions == ("storage", "downloads", "notifications", "clipboardWrite")

    @pytest.mark.parametrize("grant", [
        "GM_addStyle", "GM_info", "GM_openInTab", "GM_xmlhttpRequest",
        "unsafeWindow", "GM_somethingNew", "none",
    ])
    def test_grants_without_permission(self, grant):
        assert synthesize_permissions(ScriptMetadata(grants=[grant])).api_permissions == ()

    def test_dotted_grant_spelling(self):
        assert grant_permission("GM.setValue") == "storage"
        assert grant_permission("GM.notification") == "notifications"

    def test_grant_none_contributes_nothing(self):
        from scriptext.metadata import parse_metadata

        with_none = parse_metadata(
            "// ==UserScript==\n// @name X\n// @match a.com/*\n// @grant none\n// ==/UserScript=="
        )
        without = parse_metadata(
            "// ==UserScript==\n// @name X\n// @match a.com/*\n// ==/UserScript=="
        )

        assert synthesize_permissions(with_none) == synthesize_permissions(without)

    def test_permission_set_is_frozen(self):
        perms = PermissionSet(host_patterns=("*://a/*",))
        with pytest.raises(dataclasses.FrozenInstanceError):
            perms.host_patterns = ()


class TestInjectionMatches:

    def test_matches_and_includes_normalized(self):
        meta = ScriptMetadata(matches=["a.com/*"], includes=["http*://b.com"])

        assert injection_matches(meta) == ["*://a.com/*", "*://b.com/*"]
