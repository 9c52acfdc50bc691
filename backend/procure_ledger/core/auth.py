"""Authorization context: who is acting and what they may do."""
import enum
import uuid
from dataclasses import dataclass, field

from procure_ledger.core.errors import PermissionDeniedError


class Capability(str, enum.Enum):
    MANAGE_PROCUREMENT = "MANAGE_PROCUREMENT"
    INSPECT_GOODS = "INSPECT_GOODS"
    APPROVE_GR = "APPROVE_GR"
    MANAGE_ACCOUNTING = "MANAGE_ACCOUNTING"
    APPROVE_MATCH = "APPROVE_MATCH"


ROLE_CAPABILITIES: dict[str, frozenset[Capability]] = {
    "INSPECTOR": frozenset({Capability.INSPECT_GOODS}),
    "PROCUREMENT": frozenset({
        Capability.MANAGE_PROCUREMENT,
        Capability.INSPECT_GOODS,
        Capability.APPROVE_GR,
    }),
    "ACCOUNTANT": frozenset({Capability.MANAGE_ACCOUNTING, Capability.APPROVE_MATCH}),
    "APPROVER": frozenset({Capability.APPROVE_MATCH}),
    "ADMIN": frozenset(Capability),
    "AUDITOR": frozenset(),
}


@dataclass(frozen=True)
class AuthContext:
    user_id: uuid.UUID
    user_name: str
    user_email: str = ""
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    @classmethod
    def for_role(cls, user_id: uuid.UUID, user_name: str, role: str, user_email: str = "") -> "AuthContext":
        return cls(
            user_id=user_id,
            user_name=user_name,
            user_email=user_email,
            capabilities=ROLE_CAPABILITIES.get(role, frozenset()),
        )

    @property
    def display_name(self) -> str:
        return self.user_name or self.user_email

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability, action: str) -> None:
        """Raise PermissionDeniedError unless the user holds ``capability``."""
        if not self.can(capability):
            raise PermissionDeniedError(
                f"User {self.user_id} is not permitted to {action} (requires {capability.value}).",
                details={"capability": capability.value, "action": action},
            )

    def require_any(self, capabilities: tuple[Capability, ...], action: str) -> None:
        if not any(self.can(c) for c in capabilities):
            names = ", ".join(c.value for c in capabilities)
            raise PermissionDeniedError(
                f"User {self.user_id} is not permitted to {action} (requires one of {names}).",
                details={"capabilities": [c.value for c in capabilities], "action": action},
            )
