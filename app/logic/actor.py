from dataclasses import dataclass

from app.logic.constants import UserRole


@dataclass(frozen=True)
class Actor:
    """Already-authenticated caller: who, in which role, for which company."""
    user_id: int
    role: str
    company_id: int

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER.value
