from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

TENANT_ACTIVE = "active"
TENANT_INACTIVE = "inactive"


class TenantCredentials(BaseModel):
    """
    Master-database document for `tenant_credentials`.

    One record per tenant; the provisioning flow owns writes, the engine only reads.
    """

    tenant_id: str
    database_name: str
    username: str
    password: str = Field(repr=False)
    host: str | None = None  # overrides settings.tenant_mongo_host when set
    status: Literal["active", "inactive"] = TENANT_ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == TENANT_ACTIVE
