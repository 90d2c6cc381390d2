"""Tests for the MCP tool layer

Run with pytest from project root:
    pytest tests/test_tools.py -v
"""

import base64

import pytest
from mcp.server.fastmcp import Image as FastMCPImage

from managers.attachment_metadata import AttachmentMetadata
from managers.models_cache import ModelsCache
from models.failure import Failure, FailureKind
from models.images import ReferenceImage
from orchestrators.models_listing import ModelsListing
from tools.configuration import register_configuration_tools
from tools.edit import register_edit_tools
from tools.generation import register_generation_tools
from tools.helpers import build_response, current_user_id, decode_references
from tools.history import register_history_tools


class ToolCollector:
    """Stands in for FastMCP and keeps registered tool functions by name"""

    def __init__(self):
        self.tools = {}

    def tool(self):
        def decorator(fn):
            self.tools[fn.__name__] = fn
            return fn
        return decorator


@pytest.fixture
def tools(generation, editing, providers, settings, store, ledger, request_log):
    mcp = ToolCollector()
    register_generation_tools(mcp, generation, settings)
    register_edit_tools(mcp, editing, settings)
    register_configuration_tools(mcp, ModelsListing(providers, ModelsCache(), settings), settings)
    register_history_tools(mcp, AttachmentMetadata(store), ledger, request_log)
    return mcp.tools


def _b64(data):
    return base64.b64encode(data).decode("ascii")


class TestHelpers:
    """Tests for shared tool helpers"""

    def test_build_response_failure(self):
        response = build_response(Failure(FailureKind.RATE_LIMITED, "slow down"))
        assert response == {"error": {"kind": "rate-limited", "message": "slow down"}}

    def test_current_user_id(self, settings):
        assert current_user_id(settings) == 1
        settings.set("server.user_id", "abc")
        assert current_user_id(settings) == 0

    def test_decode_references_accepts_both_shapes(self, make_png):
        png = make_png(10, 20)
        decoded = decode_references([
            _b64(png),
            {"data": "data:image/png;base64," + _b64(png), "filename": "style.png"},
        ])
        assert all(isinstance(ref, ReferenceImage) for ref in decoded)
        assert (decoded[0].width, decoded[0].height) == (10, 20)
        assert decoded[1].filename == "style.png"

    def test_decode_references_limits(self, make_png):
        encoded = _b64(make_png())
        assert decode_references([encoded] * 5).kind is FailureKind.INVALID_INPUT
        assert decode_references(["not base64!!"]).kind is FailureKind.INVALID_INPUT
        assert decode_references([_b64(b"plain text")]).kind is FailureKind.INVALID_INPUT
        assert decode_references(None) == []


class TestGenerateTool:
    def test_generate_image(self, tools, transport, respond, make_png):
        transport.queue(respond.gemini(make_png()))
        response = tools["generate_image"](prompt="a red bicycle")
        assert response["attachment_id"] == 1
        assert response["provider"] == "gemini"

    def test_unknown_provider(self, tools, transport):
        response = tools["generate_image"](prompt="cat", provider="midjourney")
        assert response["error"]["kind"] == "invalid-input"
        assert transport.calls == []

    def test_uses_default_format(self, tools, settings, transport, respond, make_png):
        settings.set("generation_defaults.format", "webp")
        transport.queue(respond.gemini(make_png()))
        assert tools["generate_image"](prompt="cat")["mime"] == "image/webp"


class TestEditTools:
    """Tests for edit and buffer tools"""

    def _generate(self, tools, transport, respond, make_png):
        transport.queue(respond.gemini(make_png(48, 48)))
        return tools["generate_image"](prompt="a blue house", width=512, height=512)["attachment_id"]

    def test_buffer_then_commit(self, tools, transport, respond, make_png):
        attachment_id = self._generate(tools, transport, respond, make_png)
        transport.queue(respond.gemini(make_png()))

        buffered = tools["edit_image"](attachment_id=attachment_id, prompt="paint it red", save_mode="buffer")
        assert buffered["width"] == 512

        info = tools["get_edit_buffer"](buffer_key=buffered["buffer_key"])
        assert info["buffer_key"] == buffered["buffer_key"]

        committed = tools["commit_edit_buffer"](buffer_key=buffered["buffer_key"])
        assert committed["derived_from_id"] == attachment_id
        assert committed["mode"] == "save_as"

        again = tools["commit_edit_buffer"](buffer_key=buffered["buffer_key"])
        assert again["error"]["kind"] == "not-found"

    def test_thumbnail_preview(self, tools, transport, respond, make_png):
        attachment_id = self._generate(tools, transport, respond, make_png)
        transport.queue(respond.gemini(make_png()))
        buffered = tools["edit_image"](attachment_id=attachment_id, prompt="paint it red", save_mode="buffer")

        preview = tools["get_edit_buffer"](buffer_key=buffered["buffer_key"], mode="thumb", max_dim=128)

        assert isinstance(preview, FastMCPImage)

    def test_discard(self, tools, transport, respond, make_png):
        attachment_id = self._generate(tools, transport, respond, make_png)
        transport.queue(respond.gemini(make_png()))
        buffered = tools["edit_image"](attachment_id=attachment_id, prompt="paint it red", save_mode="buffer")

        assert tools["discard_edit_buffer"](buffer_key=buffered["buffer_key"]) == {
            "success": True,
            "buffer_key": buffered["buffer_key"],
        }
        assert tools["get_edit_buffer"](buffer_key=buffered["buffer_key"])["error"]["kind"] == "not-found"

    def test_invalid_save_mode(self, tools, transport):
        response = tools["edit_image"](attachment_id=1, prompt="x", save_mode="overwrite")
        assert response["error"]["kind"] == "invalid-input"
        assert transport.calls == []

    def test_invalid_buffer_view_mode(self, tools):
        assert tools["get_edit_buffer"](buffer_key="0" * 32, mode="full")["error"]["kind"] == "invalid-input"


class TestConfigurationTools:
    """Tests for model listing and settings tools"""

    def test_list_replicate_edit_models(self, tools):
        response = tools["list_models"](provider="replicate", purpose="edit")
        listing = response["providers"]["replicate"]
        assert "black-forest-labs/flux-kontext-max" in listing["models"]
        assert listing["count"] == len(listing["models"])
        assert listing["default"] in listing["models"]

    def test_list_models_bad_purpose(self, tools):
        response = tools["list_models"](provider="replicate", purpose="upscale")
        assert response["error"]["kind"] == "invalid-input"

    def test_invalidate_unknown_provider(self, tools):
        assert tools["invalidate_models_cache"](provider="nope")["error"]["kind"] == "invalid-input"

    def test_get_settings_redacts_keys(self, tools):
        response = tools["get_settings"]()
        assert response["settings"]["api_keys"]["openai"] == "***"
        assert response["connected"] == {"gemini": True, "openai": True, "replicate": True}

    def test_set_setting(self, tools, settings):
        response = tools["set_setting"](path="privacy.store_history", value=False)
        assert response["success"] is True
        assert settings.get("privacy.store_history") is False

    def test_credentials_not_writable(self, tools, settings):
        response = tools["set_setting"](path="api_keys.openai", value="stolen")
        assert response["error"]["kind"] == "invalid-input"
        assert settings.get("api_keys.openai") == "oa-key"


class TestHistoryTools:
    """Tests for provenance and request log tools"""

    def test_image_history(self, tools, transport, respond, make_png):
        transport.queue(respond.gemini(make_png()))
        attachment_id = tools["generate_image"](prompt="a red bicycle")["attachment_id"]

        response = tools["get_image_history"](attachment_id=attachment_id)

        assert response["ai_meta"]["generated"] is True
        assert response["history"][0]["type"] == "generate"
        assert response["history_enabled"] is True

    def test_missing_attachment(self, tools):
        assert tools["get_image_history"](attachment_id=7)["error"]["kind"] == "not-found"

    def test_request_log(self, tools, transport, respond, make_png):
        transport.queue(respond.json({"error": {"message": "slow down"}}, status=429))
        tools["generate_image"](prompt="cat")

        response = tools["get_request_log"](status="error", limit=500)

        assert response["count"] == 1
        assert response["entries"][0]["error_code"] == "rate-limited"
