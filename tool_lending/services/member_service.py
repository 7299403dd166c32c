from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from tool_lending.models.lending_models import Member
from tool_lending.services.errors import NotFoundError, RentalValidationError
from tool_lending.services.ledger_service import record_charge
from tool_lending.services.tool_service import add_months


ROLES = ("Admin", "Member")

LOGGER = logging.getLogger("tool_lending.members")


def is_membership_active(member: Member, today: date | None = None) -> bool:
    if not member.MembershipExpiry:
        return False
    return member.MembershipExpiry >= (today or date.today())


def create_member(
    db: Session,
    *,
    full_name: str,
    membership_expiry: date,
    email: str | None = None,
    role: str = "Member",
) -> Member:
    if role not in ROLES:
        raise RentalValidationError("role must be Admin or Member.")
    if not (full_name or "").strip():
        raise RentalValidationError("fullName is required.")

    member = Member(
        FullName=full_name.strip(),
        Email=(email or "").strip().lower() or None,
        Role=role,
        MembershipExpiry=membership_expiry,
        TotalDebt=Decimal("0"),
        CreatedDate=datetime.now(),
    )
    db.add(member)
    db.flush()
    return member


def renew_membership(
    db: Session,
    member_id: int,
    months: int,
    amount: Decimal,
    today: date | None = None,
) -> Member:
    """Extend a membership and charge the fee to the member's ledger.

    The extension starts from the current expiry when it is still running,
    otherwise from today.
    """
    if months < 1:
        raise RentalValidationError("months must be at least 1.")
    if Decimal(str(amount)) < 0:
        raise RentalValidationError("amount must not be negative.")

    member = db.execute(select(Member).where(Member.MemberID == member_id).with_for_update()).scalars().first()
    if not member:
        raise NotFoundError("Member not found")

    current_day = today or date.today()
    previous_expiry = member.MembershipExpiry
    base = previous_expiry if previous_expiry and previous_expiry >= current_day else current_day
    member.MembershipExpiry = add_months(base, months)

    if Decimal(str(amount)) > 0:
        record_charge(
            db,
            member_id,
            Decimal(str(amount)),
            "MembershipFee",
            description=f"Membership renewal {previous_expiry} -> {member.MembershipExpiry}",
        )
    db.flush()
    db.refresh(member)
    LOGGER.info("Membership for member %s renewed until %s", member_id, member.MembershipExpiry)
    return member


def get_member_or_404(db: Session, member_id: int) -> Member:
    member = db.get(Member, member_id)
    if not member:
        raise NotFoundError("Member not found")
    return member


def serialize_member(member: Member, today: Optional[date] = None) -> dict:
    return {
        "memberID": member.MemberID,
        "fullName": member.FullName,
        "email": member.Email,
        "role": member.Role,
        "membershipExpiry": member.MembershipExpiry,
        "membershipActive": is_membership_active(member, today),
        "totalDebt": member.TotalDebt,
        "createdDate": member.CreatedDate,
    }
