"""Manager classes for the Image Studio MCP Server"""

from managers.attachment_metadata import AttachmentMetadata
from managers.attachment_store import AttachmentStore, LocalAttachmentStore
from managers.edit_buffer import EditBuffer
from managers.history_ledger import HistoryLedger
from managers.models_cache import ModelsCache
from managers.permission_gate import PermissionGate, SettingsPermissionGate
from managers.request_log import RequestLog
from managers.settings_manager import SettingsManager

__all__ = [
    "AttachmentMetadata",
    "AttachmentStore",
    "EditBuffer",
    "HistoryLedger",
    "LocalAttachmentStore",
    "ModelsCache",
    "PermissionGate",
    "RequestLog",
    "SettingsManager",
    "SettingsPermissionGate",
]
