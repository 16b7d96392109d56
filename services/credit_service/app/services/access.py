from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol, Iterable

from loguru import logger

from ..errors import Unauthorized

GRANT_CREDITS = "grant_credits"
ADJUST_CREDITS = "adjust_credits"
APPROVE_TOPUP = "approve_topup"
VIEW_WALLET_DETAILS = "view_wallet_details"
DELETE_USERS = "delete_users"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as reported by the identity collaborator."""

    user_id: int
    role: str


class AccessGate(Protocol):
    def has_capability(self, role: str, capability: str) -> bool: ...


class RoleCapabilityGate:
    """Answers capability checks from a static capability -> roles table.

    The ledger services only ever ask the yes/no question; which roles hold
    which capability lives entirely in this table (see ``capability_roles``
    in the service settings).
    """

    def __init__(self, capability_roles: Mapping[str, Iterable[str]]) -> None:
        self._roles = {capability: frozenset(roles) for capability, roles in capability_roles.items()}

    def has_capability(self, role: str, capability: str) -> bool:
        return role in self._roles.get(capability, frozenset())


def require_capability(gate: AccessGate, actor: Actor, capability: str) -> None:
    if not gate.has_capability(actor.role, capability):
        logger.info(f"access.denied user={actor.user_id} role={actor.role} capability={capability}")
        raise Unauthorized(capability)
