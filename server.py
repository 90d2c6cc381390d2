import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from mcp.server.fastmcp import FastMCP

from http_client import HttpTransport
from managers import (
    AttachmentMetadata,
    EditBuffer,
    HistoryLedger,
    LocalAttachmentStore,
    ModelsCache,
    RequestLog,
    SettingsManager,
    SettingsPermissionGate,
)
from orchestrators import EditOrchestrator, GenerationOrchestrator, ModelsListing
from providers import build_providers
from tools.configuration import register_configuration_tools
from tools.edit import register_edit_tools
from tools.generation import register_generation_tools
from tools.history import register_history_tools

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("MCP_Server")

EDIT_BUFFER_DIRNAME = "edit-buffer"
REQUEST_LOG_FILENAME = "request_log.jsonl"

settings = SettingsManager()
storage_root = Path(settings.get("storage.root")).expanduser()

store = LocalAttachmentStore(storage_root, base_url=settings.get("storage.base_url", ""))
edit_buffer = EditBuffer(storage_root / EDIT_BUFFER_DIRNAME, ttl_seconds=int(settings.get("edit_buffer.ttl_seconds", 3600)))
edit_buffer.remove_orphans()
models_cache = ModelsCache(ttl_seconds=int(settings.get("models_cache.ttl_seconds", 86400)))
request_log = RequestLog(storage_root / REQUEST_LOG_FILENAME, settings)
ledger = HistoryLedger(store, settings)
metadata = AttachmentMetadata(store)
permissions = SettingsPermissionGate(settings)

providers = build_providers(settings, transport=HttpTransport(), models_cache=models_cache)
generation = GenerationOrchestrator(providers, store, ledger, permissions, settings, request_log=request_log)
editing = EditOrchestrator(providers, store, edit_buffer, ledger, permissions, settings, request_log=request_log)
models_listing = ModelsListing(providers, models_cache, settings)


class AppContext:
    def __init__(self, edit_buffer: EditBuffer):
        self.edit_buffer = edit_buffer


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle"""
    logger.info("Starting MCP server lifecycle...")
    connected = [p.value for p in providers if settings.is_connected(p)]
    logger.info(f"Storage root: {storage_root}; connected providers: {connected or 'none'}")
    try:
        yield AppContext(edit_buffer=edit_buffer)
    finally:
        removed = edit_buffer.cleanup_expired()
        logger.info(f"Shutting down MCP server ({removed} expired edit buffers removed)")


mcp = FastMCP(
    "Image_Studio_MCP_Server",
    lifespan=app_lifespan,
    host=settings.get("server.host", "127.0.0.1"),
    port=int(settings.get("server.port", 8000)),
)

register_generation_tools(mcp, generation, settings)
register_edit_tools(mcp, editing, settings)
register_configuration_tools(mcp, models_listing, settings)
register_history_tools(mcp, metadata, ledger, request_log)

if __name__ == "__main__":
    mcp.run(transport="streamable-http")
