"""Provenance and request log tools"""

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from managers.attachment_metadata import AttachmentMetadata
from managers.history_ledger import HistoryLedger
from managers.request_log import RequestLog
from models.failure import FailureKind, StorageError
from tools.helpers import error_response

logger = logging.getLogger("MCP_Server")


def register_history_tools(
    mcp: FastMCP,
    metadata: AttachmentMetadata,
    ledger: HistoryLedger,
    request_log: RequestLog
):
    """Register provenance and request log tools with the MCP server"""

    @mcp.tool()
    def get_image_history(attachment_id: int) -> dict:
        """Get the AI provenance of a saved image.

        Args:
            attachment_id: Attachment to inspect

        Returns:
            Dict with:
            - ai_meta: generated flag, last event and derived_from link
            - history: recorded events, oldest first (empty unless history storage is enabled)
            - history_enabled: whether new events are being recorded
        """
        try:
            ai_meta = metadata.get(int(attachment_id))
            if ai_meta is None:
                return error_response(FailureKind.NOT_FOUND, f"Attachment {attachment_id} not found.")
            events = ledger.list(int(attachment_id))
        except StorageError as e:
            return {"error": e.to_failure().to_dict()}
        return {
            "attachment_id": int(attachment_id),
            "ai_meta": ai_meta.to_dict(),
            "history": [event.to_dict() for event in events],
            "history_enabled": ledger.enabled,
        }

    @mcp.tool()
    def get_request_log(
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> dict:
        """Get recent provider calls from the request log, newest first.

        Logging is off unless the "logging.enabled" setting is true.

        Args:
            provider: Filter by provider key
            operation: Filter by "generate", "edit" or "commit"
            status: Filter by "success" or "error"
            limit: Maximum entries to return (default 20, max 200)

        Returns:
            {"entries": [...], "count": n, "enabled": bool}
        """
        entries = request_log.query(
            provider=provider,
            operation=operation,
            status=status,
            limit=max(1, min(int(limit), 200)),
        )
        return {"entries": entries, "count": len(entries), "enabled": request_log.enabled}
