"""
Actor context and permission names.

Every mutating call carries an explicit ActorContext; nothing reads the
acting user from ambient request state.
"""

from dataclasses import dataclass, field

from ledger_kernel.exceptions import PermissionDeniedError, ValidationError


class Permission:
    """Permission names checked by the request-level gate."""

    INVENTORY_INBOUND = "inventory:inbound"
    INVENTORY_OUTBOUND = "inventory:outbound"
    INVENTORY_ADJUST = "inventory:adjust"
    INVENTORY_RESERVE = "inventory:reserve"
    FINANCE_MANAGE = "finance:manage"
    SALES_MANAGE = "sales:manage"

    ALL = frozenset({
        INVENTORY_INBOUND,
        INVENTORY_OUTBOUND,
        INVENTORY_ADJUST,
        INVENTORY_RESERVE,
        FINANCE_MANAGE,
        SALES_MANAGE,
    })


@dataclass(frozen=True)
class ActorContext:
    """
    The authenticated actor behind a request.

    Contract:
        Built by the authentication layer; the ledger only reads it.

    Guarantees:
        - ``actor_id`` is non-empty.
        - ``require()`` raises before any guard or transaction work.
    """

    actor_id: str
    permissions: frozenset[str] = field(default_factory=frozenset)
    display_name: str | None = None

    def __post_init__(self):
        if not self.actor_id:
            raise ValidationError("actor_id is required", "actor_id")
        if not isinstance(self.permissions, frozenset):
            object.__setattr__(self, "permissions", frozenset(self.permissions))

    def has(self, permission: str) -> bool:
        return permission in self.permissions

    def require(self, permission: str) -> None:
        if permission not in self.permissions:
            raise PermissionDeniedError(self.actor_id, permission)
