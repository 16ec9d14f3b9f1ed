"""Tests for the emitted Shim and Controller programs."""

import json

from scriptext.bridge.generator import (
    BANNER,
    generate_bridge,
    generate_controller,
    generate_options_page,
    generate_shim,
)
from scriptext.bridge.protocol import CapabilityKind
from scriptext.config import BridgeConfig
from scriptext.metadata import ScriptMetadata


class TestGenerateShim:

    def test_defines_every_capability_tag(self, meta):
        shim = generate_shim(meta)

        for kind in CapabilityKind:
            if kind is CapabilityKind.GET_VALUE:
                continue  # served from the cache
            assert json.dumps(kind.value) in shim

    def test_retry_policy_from_config(self, meta):
        shim = generate_shim(meta, BridgeConfig(send_attempts=5, retry_base_delay_ms=200))

        assert "const __GM_ATTEMPTS = 5;" in shim
        assert "const __GM_BASE_DELAY_MS = 200;" in shim
        assert '"Receiving end does not exist"' in shim

    def test_default_retry_policy(self, meta):
        shim = generate_shim(meta)

        assert "const __GM_ATTEMPTS = 8;" in shim
        assert "const __GM_BASE_DELAY_MS = 150;" in shim

    def test_gm_info_embedded(self, meta):
        shim = generate_shim(meta)

        assert shim.startswith(f"/* {BANNER}: GM_* API shim */")
        assert '"scriptHandler": "scriptext"' in shim
        assert '"name": "Foo Helper"' in shim

    def test_script_name_cannot_break_out(self):
        meta = ScriptMetadata(name="*/ alert(1) /* </script>", matches=["a.com/*"])

        shim = generate_shim(meta)

        assert "</script>" not in shim
        assert shim.splitlines()[0] == f"/* {BANNER}: GM_* API shim */"

    def test_defines_gm_api(self, meta):
        shim = generate_shim(meta)

        for name in ("GM_getValue", "GM_setValue", "GM_deleteValue", "GM_listValues",
                     "GM_xmlhttpRequest", "GM_addStyle", "GM_openInTab", "GM_download",
                     "GM_notification", "unsafeWindow"):
            assert name in shim


class TestGenerateController:

    def test_prefix_and_rule(self, meta):
        controller = generate_controller(meta)

        assert 'const PREFIX = "userscript_Foo_Helper_";' in controller
        assert '"id": "us_Foo_Helper"' in controller
        assert '"https://example.com/private/*"' in controller
        assert '{"file": "userscript_api.js"}' in controller

    def test_handler_for_every_kind(self, meta):
        controller = generate_controller(meta)

        for kind in CapabilityKind:
            assert f"{json.dumps(kind.value)}: async" in controller

    def test_registration_permission(self, meta):
        assert 'const REGISTRATION_PERMISSION = "userScripts";' in generate_controller(meta)


class TestGenerateBridge:

    def test_both_parts(self, meta):
        sources = generate_bridge(meta)

        assert sources.shim == generate_shim(meta)
        assert sources.controller == generate_controller(meta)


class TestOptionsPage:

    def test_name_is_escaped(self):
        page = generate_options_page(ScriptMetadata(name="<b>Foo</b>"))

        assert "&lt;b&gt;Foo&lt;/b&gt;" in page
        assert "<b>Foo</b>" not in page
        assert "userScripts" in page
