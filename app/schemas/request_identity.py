from __future__ import annotations

from pydantic import BaseModel, Field

from app.core.config import settings


class RequestIdentity(BaseModel):
    subject: str | None = None
    user_id: int | None = None
    role_id: int | None = None
    email: str | None = None
    auth_source: str = "anonymous"
    claims: dict = Field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role_id is not None and self.role_id == settings.ADMIN_ROLE_ID

    def owns(self, created_by: int | None) -> bool:
        return self.is_admin or (created_by is not None and created_by == self.user_id)
