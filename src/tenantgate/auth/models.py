from __future__ import annotations

from dataclasses import dataclass

ALL_STORES = "*"


@dataclass(frozen=True)
class Principal:
    user_id: str
    tenant_id: str
    role: str | None = None
    # None when the token carries no store claim; membership is then not checked
    store_ids: tuple[str, ...] | None = None

    def is_member_of(self, store_id: str) -> bool:
        if self.store_ids is None:
            return True
        return ALL_STORES in self.store_ids or store_id in self.store_ids
