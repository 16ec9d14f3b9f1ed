"""Tests for bundle assembly."""

import json
import zipfile
from io import BytesIO

import pytest
from PIL import Image

from scriptext.config import ConverterConfig, ManifestConfig
from scriptext.packager import ConversionError, ExtensionBundle, Overrides, build_bundle


def _png(size=(64, 64), color=(255, 0, 0, 255)) -> bytes:
    buf = BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


class TestBuildBundle:

    def test_files_present(self, sample_script):
        bundle = build_bundle(sample_script)

        assert set(bundle.files) == {
            "manifest.json",
            "background.js",
            "userscript_api.js",
            "script.user.js",
            "options.html",
            "icon-48.png",
            "icon-128.png",
        }

    def test_script_body_stripped(self, sample_script):
        bundle = build_bundle(sample_script)

        body = bundle.files["script.user.js"].decode("utf-8")
        assert "==UserScript==" not in body
        assert body.startswith("(function () {")

    def test_manifest_matches_metadata(self, sample_script):
        bundle = build_bundle(sample_script)

        manifest = json.loads(bundle.files["manifest.json"])
        assert manifest == bundle.manifest
        assert manifest["name"] == "Foo Helper"
        assert manifest["version"] == "2.1.0"
        assert manifest["permissions"] == ["storage"]
        assert manifest["host_permissions"] == [
            "https://example.com/*",
            "*://legacy.example.org/*",
            "*://api.example.net/*",
            "*://*.api.example.net/*",
        ]

    def test_overrides_win(self, sample_script):
        bundle = build_bundle(
            sample_script,
            overrides=Overrides(description="Given", author="", homepage="https://home.example"),
        )

        assert bundle.metadata.description == "Given"
        assert bundle.metadata.author == "someone"
        assert bundle.manifest["homepage_url"] == "https://home.example"

    def test_config_applied(self, sample_script):
        config = ConverterConfig(manifest=ManifestConfig(gecko_id="foo@example.com"), icon_sizes=(16,))

        bundle = build_bundle(sample_script, config=config)

        assert "icon-16.png" in bundle.files
        assert "icon-48.png" not in bundle.files
        assert bundle.manifest["browser_specific_settings"]["gecko"]["id"] == "foo@example.com"

    def test_missing_name(self):
        with pytest.raises(ConversionError, match="@name"):
            build_bundle("// ==UserScript==\n// @match a.com/*\n// ==/UserScript==\nx();")

    def test_missing_patterns(self):
        with pytest.raises(ConversionError, match="@match or @include"):
            build_bundle("// ==UserScript==\n// @name X\n// ==/UserScript==\nx();")

    def test_no_metadata_block(self):
        with pytest.raises(ConversionError):
            build_bundle("console.log('plain script');")

    def test_uploaded_icon_resized(self, sample_script):
        bundle = build_bundle(sample_script, icon=_png(), icon_ext="png")

        with Image.open(BytesIO(bundle.files["icon-128.png"])) as img:
            assert img.size == (128, 128)
            assert img.getpixel((64, 64)) == (255, 0, 0, 255)

    def test_unreadable_icon_falls_back_to_blank(self, sample_script):
        bundle = build_bundle(sample_script, icon=b"not an image", icon_ext="png")

        with Image.open(BytesIO(bundle.files["icon-48.png"])) as img:
            assert img.size == (48, 48)
            assert img.getpixel((0, 0))[3] == 0


class TestExtensionBundle:

    def test_archive_name(self, sample_script):
        assert build_bundle(sample_script).archive_name == "Foo Helper-extension.zip"

    def test_archive_name_without_separators(self, meta):
        bundle = ExtensionBundle(metadata=meta, permissions=None, manifest={})
        bundle.metadata.name = "a/b\\c"

        assert bundle.archive_name == "a_b_c-extension.zip"

    def test_write_zip(self, sample_script, tmp_path):
        bundle = build_bundle(sample_script)

        path = bundle.write_zip(tmp_path / "out" / bundle.archive_name)

        with zipfile.ZipFile(path) as zf:
            assert sorted(zf.namelist()) == sorted(bundle.files)
            assert zf.read("background.js") == bundle.files["background.js"]

    def test_write_directory(self, sample_script, tmp_path):
        bundle = build_bundle(sample_script)

        path = bundle.write_directory(tmp_path / "unpacked")

        assert sorted(p.name for p in path.iterdir()) == sorted(bundle.files)
        assert json.loads((path / "manifest.json").read_text()) == bundle.manifest
