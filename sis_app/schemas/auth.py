from pydantic import BaseModel
from uuid import UUID

from sis_app.models.all_models import UserRole


class RequestContext(BaseModel):
    """Who is acting, for which tenant. Passed explicitly into every data-access call."""
    organization_id: UUID
    actor_id: UUID
    role: UserRole

    @property
    def is_reviewer(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.PRINCIPAL, UserRole.REGISTRAR, UserRole.MENTOR)
