from dataclasses import dataclass
from typing import Optional
import enum

class ActorRole(str, enum.Enum):
    ADMIN = "admin"
    DRIVER = "driver"
    CUSTOMER = "customer"
    SYSTEM = "system"

@dataclass(frozen=True)
class Actor:
    """Authenticated caller as vouched for by the identity provider"""
    role: ActorRole
    user_id: Optional[int] = None

    @property
    def label(self) -> str:
        """Value recorded in audit trails"""
        if self.user_id is None:
            return self.role.value
        return str(self.user_id)

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

SYSTEM_ACTOR = Actor(role=ActorRole.SYSTEM)
