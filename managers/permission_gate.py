"""Permission checks for generate, edit and replace operations"""

from abc import ABC, abstractmethod
from typing import Iterable


class PermissionGate(ABC):
    @abstractmethod
    def can_generate(self, user_id: int) -> bool:
        ...

    @abstractmethod
    def can_edit(self, user_id: int) -> bool:
        ...

    @abstractmethod
    def can_replace_original(self, user_id: int, attachment_id: int) -> bool:
        ...


class SettingsPermissionGate(PermissionGate):
    """Grants permissions from the `permissions.*` settings.

    `permissions.allowed_users`, when a non-empty list, restricts every
    operation to the listed user ids.
    """

    def __init__(self, settings):
        self.settings = settings

    def _user_allowed(self, user_id: int) -> bool:
        allowed: Iterable = self.settings.get("permissions.allowed_users") or []
        if not allowed:
            return True
        return int(user_id) in {int(u) for u in allowed}

    def can_generate(self, user_id: int) -> bool:
        return self._user_allowed(user_id) and bool(self.settings.get("permissions.allow_generate", True))

    def can_edit(self, user_id: int) -> bool:
        return self._user_allowed(user_id) and bool(self.settings.get("permissions.allow_edit", True))

    def can_replace_original(self, user_id: int, attachment_id: int) -> bool:
        return self.can_edit(user_id) and bool(self.settings.get("permissions.allow_replace_original", True))
