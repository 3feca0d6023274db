from sqlalchemy.orm import Session

from agenda.core.errors import ProviderNotFound
from agenda.models.user import ROLE_PROVIDER, User


class ProviderDirectory:
    """Looks providers up in the users table."""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, provider_id: int) -> bool:
        return self.db.query(User.id).filter(
            User.id == provider_id,
            User.role == ROLE_PROVIDER,
            User.is_active.is_not(False),
        ).first() is not None

    def require(self, provider_id: int) -> None:
        if not self.exists(provider_id):
            raise ProviderNotFound(provider_id)
