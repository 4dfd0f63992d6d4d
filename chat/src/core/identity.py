from dataclasses import dataclass
from enum import Enum

from core.errors import Unauthenticated


class Role(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role


def require_actor(actor: Actor | None) -> Actor:
    if actor is None or not actor.id or not actor.id.strip():
        raise Unauthenticated()
    return actor


def parse_actor(actor_id: str | None, role: str | None) -> Actor:
    """Build an actor from the identity gateway's values, or refuse."""
    if not actor_id or not actor_id.strip():
        raise Unauthenticated()
    try:
        parsed_role = Role((role or "").strip().lower())
    except ValueError:
        raise Unauthenticated(f"Unknown actor role: {role!r}") from None
    return Actor(id=actor_id.strip(), role=parsed_role)
