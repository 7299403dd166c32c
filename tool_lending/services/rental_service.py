from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from tool_lending.models.lending_models import Member, Rental, RentalHistory, Tool
from tool_lending.services.actor_service import Actor, require_admin, require_owner_or_admin
from tool_lending.services.errors import (
    BlockedError,
    ConflictError,
    ExpiredMembershipError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    RentalValidationError,
)
from tool_lending.services.ledger_service import mark_rental_returned, record_rental_charge, reverse_rental_charge
from tool_lending.services.member_service import is_membership_active
from tool_lending.services.notification_service import RentalNotifier
from tool_lending.services.rental_rules import (
    DEFAULT_BLOCKING_LEVELS,
    compute_price,
    first_conflict,
    is_allowed_anchor,
    is_maintenance_blocked,
    rental_weeks,
)
from tool_lending.services.tool_service import next_maintenance_due
from tool_lending.settings import FRIDAY, LendingSettings


LOGGER = logging.getLogger("tool_lending.rentals")

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class RentalStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    REJECTED = "rejected"


RENTAL_TRANSITIONS = {
    RentalStatus.PENDING: {RentalStatus.ACTIVE, RentalStatus.REJECTED},
    RentalStatus.ACTIVE: {RentalStatus.COMPLETED},
    RentalStatus.COMPLETED: set(),
    RentalStatus.REJECTED: set(),
}
NON_TERMINAL_STATES = (RentalStatus.PENDING, RentalStatus.ACTIVE)


def format_rental_number(rental_id: int, prefix: str = "RNT") -> str:
    token = (prefix or "RNT").upper()
    return f"{token}-{rental_id:03d}"


def transition_state(rental: Rental, target: RentalStatus) -> None:
    current = RentalStatus(rental.Status)
    if target not in RENTAL_TRANSITIONS[current]:
        raise InvalidStateError(
            f"Rental {rental.RentalNumber} is {current.value}; it cannot become {target.value}."
        )
    rental.Status = target.value
    rental.UpdatedDate = datetime.now()


def serialize_history(entry: RentalHistory) -> dict:
    return {
        "historyID": entry.HistoryID,
        "rentalID": entry.RentalID,
        "actorID": entry.ActorID,
        "actorName": entry.Actor.FullName if entry.Actor else None,
        "action": entry.Action,
        "comment": entry.Comment,
        "createdAt": entry.CreatedAt,
    }


def serialize_rental(rental: Rental, include_history: bool = False) -> dict:
    payload = {
        "rentalID": rental.RentalID,
        "rentalNumber": rental.RentalNumber,
        "toolID": rental.ToolID,
        "memberID": rental.MemberID,
        "status": rental.Status,
        "startDate": rental.StartDate,
        "endDate": rental.EndDate,
        "weeks": rental_weeks(rental.StartDate, rental.EndDate),
        "totalPrice": rental.TotalPrice,
        "actualReturnDate": rental.ActualReturnDate,
        "returnComment": rental.ReturnComment,
        "createdDate": rental.CreatedDate,
        "updatedDate": rental.UpdatedDate,
        "tool": {
            "toolID": rental.Tool.ToolID,
            "toolName": rental.Tool.ToolName,
            "weeklyPrice": rental.Tool.WeeklyPrice,
        } if rental.Tool else None,
        "member": {
            "memberID": rental.Member.MemberID,
            "fullName": rental.Member.FullName,
        } if rental.Member else None,
    }
    if include_history:
        payload["history"] = [serialize_history(entry) for entry in rental.History]
    return payload


class RentalLifecycleEngine:
    """Validates and applies rental transitions.

    Each public operation runs in exactly one database transaction taken from the
    injected session factory: the rental row, the tool status, the member debt,
    the ledger entry and the history row commit together or not at all.
    Notifications go out only after the commit.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        notifier: Optional[RentalNotifier] = None,
        settings: Optional[LendingSettings] = None,
        today_provider: Callable[[], date] = date.today,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._anchor_weekday = settings.anchor_weekday if settings else FRIDAY
        self._blocking_levels = settings.maintenance_blocking_levels if settings else DEFAULT_BLOCKING_LEVELS
        self._today = today_provider

    # -- transitions -------------------------------------------------------

    def create_rental(
        self,
        actor: Actor,
        tool_id: int,
        member_id: int,
        start_date: date,
        end_date: date,
        total_price: Decimal | float | None = None,
    ) -> dict:
        if not actor.is_admin:
            if member_id != actor.member_id:
                raise ForbiddenError("Members can only request rentals for themselves.")
            if total_price is not None:
                raise ForbiddenError("Only administrators can set a manual price.")
        if total_price is not None and Decimal(str(total_price)) < 0:
            raise RentalValidationError("totalPrice must not be negative.")
        self._check_interval(start_date, end_date)
        today = self._today()

        with self._session_factory() as db, db.begin():
            tool = self._lock_tool(db, tool_id)
            if not tool:
                raise NotFoundError("Tool not found")
            self._check_tool_bookable(tool, today)

            member = db.get(Member, member_id)
            if not member:
                raise NotFoundError("Member not found")
            if not is_membership_active(member, today):
                raise ExpiredMembershipError(f"Membership of {member.FullName} expired on {member.MembershipExpiry}.")

            self._check_conflicts(db, tool_id, start_date, end_date)

            price = compute_price(tool.WeeklyPrice, start_date, end_date, total_price)
            weeks = rental_weeks(start_date, end_date)
            initial = RentalStatus.ACTIVE if actor.is_admin else RentalStatus.PENDING
            rental = Rental(
                ToolID=tool_id,
                MemberID=member_id,
                StartDate=start_date,
                EndDate=end_date,
                Status=initial.value,
                TotalPrice=price,
                CreatedDate=datetime.now(),
                UpdatedDate=datetime.now(),
            )
            db.add(rental)
            db.flush()
            rental.RentalNumber = format_rental_number(rental.RentalID)

            if initial is RentalStatus.ACTIVE:
                tool.Status = "rented"
                tool.UpdatedDate = datetime.now()
            record_rental_charge(db, rental, tool)
            self._record_history(db, rental, actor, "created", f"Rental created ({weeks} week(s))")
            db.flush()
            payload = serialize_rental(rental)

        LOGGER.info(
            "Rental %s created by %s: tool=%s member=%s %s..%s price=%s status=%s",
            payload["rentalNumber"], actor.member_id, tool_id, member_id, start_date, end_date, price, initial.value,
        )
        self._notify(
            payload["rentalID"],
            "RentalCreated" if initial is RentalStatus.PENDING else "RentalActivated",
            f"Rental {payload['rentalNumber']} {initial.value} for {start_date} - {end_date}",
        )
        return payload

    def approve_rental(self, actor: Actor, rental_id: int) -> dict:
        require_admin(actor, "approve rentals")
        with self._session_factory() as db, db.begin():
            rental = self._lock_rental(db, rental_id)
            transition_state(rental, RentalStatus.ACTIVE)
            tool = self._lock_tool(db, rental.ToolID)
            if tool.Status in {"maintenance", "unavailable"}:
                raise BlockedError(f"Tool {tool.ToolName} is {tool.Status}; it cannot be handed out.")
            tool.Status = "rented"
            tool.UpdatedDate = datetime.now()
            self._record_history(db, rental, actor, "approved", None)
            db.flush()
            payload = serialize_rental(rental)

        LOGGER.info("Rental %s approved by %s", payload["rentalNumber"], actor.member_id)
        self._notify(rental_id, "RentalApproved", f"Rental {payload['rentalNumber']} approved")
        return payload

    def reject_rental(self, actor: Actor, rental_id: int, comment: str | None = None) -> dict:
        require_admin(actor, "reject rentals")
        with self._session_factory() as db, db.begin():
            rental = self._lock_rental(db, rental_id)
            transition_state(rental, RentalStatus.REJECTED)
            tool = self._lock_tool(db, rental.ToolID)
            self._release_tool(db, tool, rental)
            refund = reverse_rental_charge(db, rental)
            self._record_history(db, rental, actor, "rejected", comment)
            db.flush()
            payload = serialize_rental(rental)

        LOGGER.info("Rental %s rejected by %s; refunded %s", payload["rentalNumber"], actor.member_id, refund)
        self._notify(
            rental_id,
            "RentalRejected",
            f"Rental {payload['rentalNumber']} rejected" + (f": {comment}" if comment else ""),
        )
        return payload

    def return_rental(
        self,
        actor: Actor,
        rental_id: int,
        actual_end_date: date | None = None,
        comment: str | None = None,
    ) -> dict:
        with self._session_factory() as db, db.begin():
            rental = self._lock_rental(db, rental_id)
            require_owner_or_admin(actor, rental.MemberID, "You can only return your own rentals.")
            transition_state(rental, RentalStatus.COMPLETED)
            if actual_end_date is None:
                returned_on = max(self._today(), rental.StartDate)
            elif actual_end_date < rental.StartDate:
                raise RentalValidationError("Return date cannot be before the rental start date.")
            else:
                returned_on = actual_end_date
            rental.ActualReturnDate = returned_on
            rental.ReturnComment = comment
            tool = self._lock_tool(db, rental.ToolID)
            self._release_tool(db, tool, rental)
            mark_rental_returned(db, rental)
            self._record_history(db, rental, actor, "returned", comment or "Return processed")
            db.flush()
            payload = serialize_rental(rental)

        LOGGER.info("Rental %s returned on %s by %s", payload["rentalNumber"], returned_on, actor.member_id)
        self._notify(rental_id, "RentalReturned", f"Rental {payload['rentalNumber']} returned on {returned_on}")
        return payload

    def delete_rental(self, actor: Actor, rental_id: int) -> dict:
        require_admin(actor, "delete rentals")
        with self._session_factory() as db, db.begin():
            rental = self._lock_rental(db, rental_id)
            rental_number = rental.RentalNumber
            tool = self._lock_tool(db, rental.ToolID)
            refund = reverse_rental_charge(db, rental)
            if tool and tool.Status == "rented":
                tool.Status = "available"
                tool.UpdatedDate = datetime.now()
            db.execute(
                delete(RentalHistory)
                .where(RentalHistory.RentalID == rental_id)
                .execution_options(synchronize_session="fetch")
            )
            db.flush()
            db.delete(rental)

        LOGGER.info("Rental %s deleted by %s; refunded %s", rental_number, actor.member_id, refund)
        return {"success": True, "message": "Rental deleted", "rentalID": rental_id, "refunded": refund}

    # -- reads -------------------------------------------------------------

    def get_rental(self, actor: Actor, rental_id: int) -> dict:
        with self._session_factory() as db:
            rental = db.get(Rental, rental_id)
            if not rental:
                raise NotFoundError("Rental not found")
            require_owner_or_admin(actor, rental.MemberID)
            return serialize_rental(rental, include_history=True)

    def list_rentals(
        self,
        actor: Actor,
        status: str | None = None,
        member_id: int | None = None,
        tool_id: int | None = None,
        start_from: date | None = None,
        start_to: date | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict:
        stmt = select(Rental)
        if not actor.is_admin:
            stmt = stmt.where(Rental.MemberID == actor.member_id)
        elif member_id is not None:
            stmt = stmt.where(Rental.MemberID == member_id)
        if status:
            if status not in {state.value for state in RentalStatus}:
                raise RentalValidationError(f"Unknown rental status: {status}")
            stmt = stmt.where(Rental.Status == status)
        if tool_id is not None:
            stmt = stmt.where(Rental.ToolID == tool_id)
        if start_from:
            stmt = stmt.where(Rental.StartDate >= start_from)
        if start_to:
            stmt = stmt.where(Rental.StartDate <= start_to)

        with self._session_factory() as db:
            total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
            rentals = db.execute(
                stmt.options(selectinload(Rental.Tool), selectinload(Rental.Member))
                .order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars().all()
            return {
                "data": [serialize_rental(rental) for rental in rentals],
                "meta": {"total": total, "page": page, "limit": limit, "totalPages": -(-total // limit)},
            }

    # -- helpers -----------------------------------------------------------

    def _check_interval(self, start_date: date, end_date: date) -> None:
        anchor_name = WEEKDAY_NAMES[self._anchor_weekday]
        if not is_allowed_anchor(start_date, self._anchor_weekday):
            raise RentalValidationError(f"Start date must be a {anchor_name}.")
        if not is_allowed_anchor(end_date, self._anchor_weekday):
            raise RentalValidationError(f"End date must be a {anchor_name}.")
        if end_date <= start_date:
            raise RentalValidationError("End date must be after start date.")

    def _check_tool_bookable(self, tool: Tool, today: date) -> None:
        if tool.Status == "maintenance":
            raise BlockedError(f"Tool {tool.ToolName} is currently in maintenance.")
        if tool.Status == "unavailable":
            raise BlockedError(f"Tool {tool.ToolName} is not available.")
        if is_maintenance_blocked(
            tool.MaintenanceImportance,
            tool.MaintenanceInterval,
            tool.LastMaintenanceDate,
            today,
            self._blocking_levels,
        ):
            due = next_maintenance_due(tool)
            detail = f"maintenance was due on {due}" if due else "it has never been serviced"
            raise BlockedError(
                f"Tool {tool.ToolName} requires maintenance before rental: {detail} "
                f"({tool.MaintenanceImportance} importance, every {tool.MaintenanceInterval} month(s))."
            )

    def _check_conflicts(self, db: Session, tool_id: int, start_date: date, end_date: date) -> None:
        existing = db.execute(
            select(Rental)
            .where(Rental.ToolID == tool_id)
            .where(Rental.Status.in_([state.value for state in NON_TERMINAL_STATES]))
            .order_by(Rental.StartDate)
        ).scalars().all()
        clash = first_conflict(start_date, end_date, [(r.StartDate, r.EndDate) for r in existing])
        if clash is None:
            return
        holder = next(r for r in existing if (r.StartDate, r.EndDate) == clash)
        raise ConflictError(
            f"Tool is already reserved from {clash[0]} to {clash[1]} (rental {holder.RentalNumber}, {holder.Status})."
        )

    def _lock_tool(self, db: Session, tool_id: int) -> Optional[Tool]:
        return db.execute(select(Tool).where(Tool.ToolID == tool_id).with_for_update()).scalars().first()

    def _lock_rental(self, db: Session, rental_id: int) -> Rental:
        rental = db.execute(select(Rental).where(Rental.RentalID == rental_id).with_for_update()).scalars().first()
        if not rental:
            raise NotFoundError("Rental not found")
        return rental

    def _release_tool(self, db: Session, tool: Optional[Tool], rental: Rental) -> None:
        if not tool or tool.Status != "rented":
            return
        still_out = db.execute(
            select(func.count(Rental.RentalID))
            .where(Rental.ToolID == tool.ToolID)
            .where(Rental.RentalID != rental.RentalID)
            .where(Rental.Status == RentalStatus.ACTIVE.value)
        ).scalar_one()
        if not still_out:
            tool.Status = "available"
            tool.UpdatedDate = datetime.now()

    def _record_history(self, db: Session, rental: Rental, actor: Actor, action: str, comment: str | None) -> None:
        db.add(
            RentalHistory(
                RentalID=rental.RentalID,
                ActorID=actor.member_id,
                Action=action,
                Comment=comment,
                CreatedAt=datetime.now(),
            )
        )

    def _notify(self, rental_id: int, notification_type: str, payload: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(rental_id, notification_type, payload)
        except Exception:
            LOGGER.exception("Notifier failed for rental %s (%s)", rental_id, notification_type)
