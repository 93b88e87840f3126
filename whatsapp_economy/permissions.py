"""Owner / admin capability checks based on configured phone numbers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .utils import normalize_number

if TYPE_CHECKING:
    from .config import AdminConfig


class Permissions:
    """Owner is implicitly an admin. Numbers compare by digits only."""

    def __init__(self, owner_number: str = "", admin_numbers: list[str] | None = None) -> None:
        self._owner = normalize_number(owner_number) if owner_number else ""
        self._admins = {normalize_number(n) for n in admin_numbers or [] if normalize_number(n)}

    @classmethod
    def from_config(cls, config: AdminConfig) -> Permissions:
        return cls(config.owner_number, config.admin_numbers)

    def is_owner(self, user_id: str) -> bool:
        return bool(self._owner) and normalize_number(user_id) == self._owner

    def is_admin(self, user_id: str) -> bool:
        return self.is_owner(user_id) or normalize_number(user_id) in self._admins

    @property
    def admin_count(self) -> int:
        return len(self._admins | ({self._owner} if self._owner else set()))
