"""Single-owner access control, composed into each contract rather than inherited."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from handguard.errors import Unauthorized, ValidationError
from handguard.units import is_zero_address, normalize_address

LOG = logging.getLogger("ownable")


@dataclass
class Ownable:
    owner: str

    def __post_init__(self) -> None:
        normalized = normalize_address(self.owner)
        if normalized is None or is_zero_address(normalized):
            raise ValidationError("Invalid owner address")
        self.owner = normalized

    def is_owner(self, caller: str) -> bool:
        return normalize_address(caller) == self.owner

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise Unauthorized(caller)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller)
        normalized = normalize_address(new_owner)
        if normalized is None or is_zero_address(normalized):
            raise ValidationError("Invalid owner address")
        LOG.info("[ownable] transfer from=%s to=%s", self.owner, normalized)
        self.owner = normalized
