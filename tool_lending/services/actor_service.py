from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from tool_lending.models.lending_models import Member
from tool_lending.services.errors import ForbiddenError


ADMIN_ROLE = "Admin"


@dataclass(frozen=True)
class Actor:
    member_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def resolve_actor(db: Session, member_id: int | str | None) -> Actor | None:
    raw = str(member_id or "").strip()
    if not raw.isdigit() or int(raw) <= 0:
        return None
    member = db.get(Member, int(raw))
    if not member:
        return None
    return Actor(member_id=member.MemberID, role=member.Role)


def require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise ForbiddenError(f"Only administrators can {action}.")


def require_owner_or_admin(actor: Actor, member_id: int, message: str = "Access denied") -> None:
    if actor.is_admin or actor.member_id == member_id:
        return
    raise ForbiddenError(message)
