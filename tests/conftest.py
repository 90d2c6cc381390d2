"""Shared fixtures: fake HTTP transport, in-memory images, isolated settings"""

import base64
import json
from io import BytesIO

import pytest
from PIL import Image

from http_client import HttpResponse
from managers import models_catalog
from managers.attachment_store import LocalAttachmentStore
from managers.edit_buffer import EditBuffer
from managers.history_ledger import HistoryLedger
from managers.models_cache import ModelsCache
from managers.permission_gate import SettingsPermissionGate
from managers.request_log import RequestLog
from managers.settings_manager import CREDENTIAL_ENV_VARS, SettingsManager
from orchestrators.edit import EditOrchestrator
from orchestrators.generation import GenerationOrchestrator
from providers import build_providers

ENV_VARS = list(CREDENTIAL_ENV_VARS.values()) + [
    "IMAGE_STUDIO_STORAGE_DIR",
    "IMAGE_STUDIO_BASE_URL",
    "IMAGE_STUDIO_STORE_HISTORY",
    "IMAGE_STUDIO_USER_ID",
]


class FakeTransport:
    """Records every request and replays queued responses in order"""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, headers=None, json=None, data=None, files=None, timeout=60):
        self.calls.append({
            "method": method,
            "url": url,
            "headers": headers or {},
            "json": json,
            "data": data,
            "files": files,
            "timeout": timeout,
        })
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, headers=None, timeout=60):
        return self.request("GET", url, headers=headers, timeout=timeout)


def png_bytes(width=64, height=64, color=(200, 30, 30), mode="RGB", fmt="PNG"):
    if mode == "RGBA" and len(color) == 3:
        color = color + (128,)
    img = Image.new(mode, (width, height), color)
    output = BytesIO()
    img.save(output, format=fmt)
    return output.getvalue()


def json_response(payload, status=200):
    return HttpResponse(status=status, content=json.dumps(payload).encode("utf-8"), headers={"Content-Type": "application/json"})


def image_response(data, mime="image/png"):
    return HttpResponse(status=200, content=data, headers={"Content-Type": mime})


def gemini_payload(data):
    return {
        "candidates": [{
            "content": {
                "parts": [
                    {"text": "Here you go"},
                    {"inlineData": {"mimeType": "image/png", "data": base64.b64encode(data).decode("ascii")}},
                ]
            }
        }]
    }


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep real credentials and env settings out of every test"""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    models_catalog.reset_catalog()
    yield
    models_catalog.reset_catalog()


@pytest.fixture
def make_png():
    return png_bytes


@pytest.fixture
def respond():
    """Response builders: respond.json(payload), respond.image(bytes), respond.gemini(bytes)"""
    class Responders:
        json = staticmethod(json_response)
        image = staticmethod(image_response)

        @staticmethod
        def gemini(data, status=200):
            return json_response(gemini_payload(data), status=status)

    return Responders


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def settings(tmp_path):
    return SettingsManager(
        config_file=tmp_path / "config.json",
        overrides={
            "api_keys": {"gemini": "gem-key", "openai": "oa-key", "replicate": "rep-token"},
            "privacy": {"store_history": True},
            "logging": {"enabled": True},
            "storage": {"root": str(tmp_path / "storage")},
            "providers": {"replicate": {"poll_attempts": 2, "poll_interval": 0}},
        },
    )


@pytest.fixture
def store(tmp_path):
    return LocalAttachmentStore(tmp_path / "storage", base_url="https://media.example.com")


@pytest.fixture
def edit_buffer(tmp_path):
    return EditBuffer(tmp_path / "storage" / "edit-buffer", ttl_seconds=3600)


@pytest.fixture
def ledger(store, settings):
    return HistoryLedger(store, settings)


@pytest.fixture
def request_log(tmp_path, settings):
    return RequestLog(tmp_path / "storage" / "request_log.jsonl", settings)


@pytest.fixture
def providers(settings, transport):
    return build_providers(settings, transport=transport, models_cache=ModelsCache())


@pytest.fixture
def generation(providers, store, ledger, settings, request_log):
    return GenerationOrchestrator(
        providers,
        store,
        ledger,
        SettingsPermissionGate(settings),
        settings,
        request_log=request_log,
        clock=lambda: 1_700_000_000,
    )


@pytest.fixture
def editing(providers, store, edit_buffer, ledger, settings, request_log):
    return EditOrchestrator(
        providers,
        store,
        edit_buffer,
        ledger,
        SettingsPermissionGate(settings),
        settings,
        request_log=request_log,
        clock=lambda: 1_700_000_100,
    )
