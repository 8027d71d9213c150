"""Tests for the service worker renderer."""

import json

from hubcache._pwa import render_service_worker
from hubcache.config import DEFAULT_FALLBACK, DEFAULT_MANIFEST


class TestRenderServiceWorker:
    """Tests for render_service_worker function."""

    def test_embeds_cache_name(self) -> None:
        script = render_service_worker("hub-cache-v3", ["./index.html"], "./offline.html")
        assert "const CACHE_NAME = \"hub-cache-v3\";" in script

    def test_embeds_manifest_as_array(self) -> None:
        """The manifest is a JSON array literal."""
        script = render_service_worker("v1", list(DEFAULT_MANIFEST), DEFAULT_FALLBACK)

        start = script.index("const urlsToCache = ") + len("const urlsToCache = ")
        end = script.index(";", start)
        assert json.loads(script[start:end]) == list(DEFAULT_MANIFEST)

    def test_embeds_fallback(self) -> None:
        script = render_service_worker("v1", ["./offline.html"], "./offline.html")
        assert "const OFFLINE_URL = \"./offline.html\";" in script

    def test_registers_lifecycle_events(self) -> None:
        """Install, fetch and activate handlers are present."""
        script = render_service_worker("v1", ["./offline.html"], "./offline.html")

        for event in ("install", "fetch", "activate"):
            assert f"self.addEventListener('{event}'" in script

    def test_caches_only_basic_200(self) -> None:
        script = render_service_worker("v1", ["./offline.html"], "./offline.html")
        assert "response.status !== 200 || response.type !== 'basic'" in script
        assert "response.clone()" in script

    def test_quotes_are_escaped(self) -> None:
        """Names containing quotes still produce valid string literals."""
        script = render_service_worker('it\'s "v1"', ["./offline.html"], "./offline.html")
        assert 'const CACHE_NAME = "it\'s \\"v1\\"";' in script

    def test_no_unreplaced_placeholders(self) -> None:
        script = render_service_worker("v1", ["./offline.html"], "./offline.html")
        assert "$" not in script

    def test_placeholder_like_values_not_expanded(self) -> None:
        """Inserted values are never substituted a second time."""
        script = render_service_worker("v$manifest", ["/a.html"], "/$cache_name.html")

        assert 'const CACHE_NAME = "v$manifest";' in script
        assert 'const urlsToCache = [\n    "/a.html"\n];' in script
        assert 'const OFFLINE_URL = "/$cache_name.html";' in script

    def test_line_terminators_do_not_escape_comment(self) -> None:
        script = render_service_worker("v1\rx\u2028y\u2029z\nw", ["/a.html"], "/a.html")

        assert "// Cache: v1 x y z w\n" in script
        assert 'const CACHE_NAME = "v1\\rx\\u2028y\\u2029z\\nw";' in script
