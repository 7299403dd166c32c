from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from tool_lending.models.lending_models import LedgerTransaction, Member, Rental, Tool
from tool_lending.services.errors import InvalidStateError, NotFoundError, RentalValidationError


CHARGE_TYPES = ("Rental", "MembershipFee", "Repair")
TRANSACTION_TYPES = CHARGE_TYPES + ("Payment",)
PAYMENT_METHODS = ("cash", "card", "transfer", "check")

WORKFLOW_RESERVED = "reserved"
WORKFLOW_TOOL_RETURNED = "tool_returned"

LOGGER = logging.getLogger("tool_lending.ledger")


def adjust_member_debt(db: Session, member_id: int, delta: Decimal) -> None:
    """Apply a signed delta to a member's debt as an in-database increment."""
    if not delta:
        return
    result = db.execute(
        update(Member)
        .where(Member.MemberID == member_id)
        .values(TotalDebt=Member.TotalDebt + delta)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise NotFoundError("Member not found")


def record_rental_charge(db: Session, rental: Rental, tool: Tool) -> LedgerTransaction:
    entry = LedgerTransaction(
        MemberID=rental.MemberID,
        RentalID=rental.RentalID,
        Amount=rental.TotalPrice,
        Type="Rental",
        Status="pending",
        WorkflowStep=WORKFLOW_RESERVED,
        Description=f"Rental {rental.RentalNumber}: {tool.ToolName}",
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(entry)
    adjust_member_debt(db, rental.MemberID, Decimal(rental.TotalPrice))
    return entry


def reverse_rental_charge(db: Session, rental: Rental) -> Decimal:
    """Undo everything ``record_rental_charge`` did for a rental.

    Only still-pending charges are refunded against the member's debt; a charge
    already marked paid reduced the debt when it was paid, and a rental without
    entries was reversed before. Returns the refunded amount.
    """
    entries = db.execute(
        select(LedgerTransaction)
        .where(LedgerTransaction.RentalID == rental.RentalID)
        .where(LedgerTransaction.Type == "Rental")
    ).scalars().all()

    refund = Decimal("0")
    for entry in entries:
        if entry.Status == "pending":
            refund += Decimal(entry.Amount or 0)
        db.delete(entry)

    adjust_member_debt(db, rental.MemberID, -refund)
    return refund


def mark_rental_returned(db: Session, rental: Rental) -> int:
    result = db.execute(
        update(LedgerTransaction)
        .where(LedgerTransaction.RentalID == rental.RentalID)
        .where(LedgerTransaction.Type == "Rental")
        .values(WorkflowStep=WORKFLOW_TOOL_RETURNED, UpdatedDate=datetime.now())
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount


def record_charge(
    db: Session,
    member_id: int,
    amount: Decimal,
    transaction_type: str,
    description: str | None = None,
) -> LedgerTransaction:
    if transaction_type not in CHARGE_TYPES or transaction_type == "Rental":
        raise RentalValidationError("Standalone charges must be MembershipFee or Repair.")
    amount = Decimal(str(amount))
    if amount <= 0:
        raise RentalValidationError("Charge amount must be positive.")
    _require_member(db, member_id)

    entry = LedgerTransaction(
        MemberID=member_id,
        Amount=amount,
        Type=transaction_type,
        Status="pending",
        Description=description,
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(entry)
    adjust_member_debt(db, member_id, amount)
    db.flush()
    LOGGER.info("%s charge of %s recorded for member %s", transaction_type, amount, member_id)
    return entry


def record_payment(
    db: Session,
    member_id: int,
    amount: Decimal,
    method: str,
    description: str | None = None,
) -> LedgerTransaction:
    amount = Decimal(str(amount))
    if amount <= 0:
        raise RentalValidationError("Payment amount must be positive.")
    if method not in PAYMENT_METHODS:
        raise RentalValidationError(f"method must be one of {', '.join(PAYMENT_METHODS)}.")
    _require_member(db, member_id)

    entry = LedgerTransaction(
        MemberID=member_id,
        Amount=amount,
        Type="Payment",
        Status="paid",
        Method=method,
        Description=description or "Payment",
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(entry)
    adjust_member_debt(db, member_id, -amount)
    db.flush()
    LOGGER.info("Payment of %s (%s) recorded for member %s", amount, method, member_id)
    return entry


def mark_transaction_paid(db: Session, transaction_id: int, method: str | None = None) -> LedgerTransaction:
    entry = db.execute(
        select(LedgerTransaction).where(LedgerTransaction.TransactionID == transaction_id).with_for_update()
    ).scalars().first()
    if not entry:
        raise NotFoundError("Transaction not found")
    if entry.Type == "Payment":
        raise InvalidStateError("Payments are recorded as paid already.")
    if entry.Status == "paid":
        raise InvalidStateError("Transaction is already paid.")
    if method is not None and method not in PAYMENT_METHODS:
        raise RentalValidationError(f"method must be one of {', '.join(PAYMENT_METHODS)}.")

    entry.Status = "paid"
    entry.Method = method or entry.Method
    entry.UpdatedDate = datetime.now()
    adjust_member_debt(db, entry.MemberID, -Decimal(entry.Amount))
    db.flush()
    LOGGER.info("Transaction %s marked paid for member %s", transaction_id, entry.MemberID)
    return entry


def list_transactions(
    db: Session,
    member_id: Optional[int] = None,
    transaction_type: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    stmt = select(LedgerTransaction)
    summary_stmt = select(LedgerTransaction.Status, func.coalesce(func.sum(LedgerTransaction.Amount), 0))
    filters = []
    if member_id is not None:
        filters.append(LedgerTransaction.MemberID == member_id)
    if transaction_type:
        if transaction_type not in TRANSACTION_TYPES:
            raise RentalValidationError(f"type must be one of {', '.join(TRANSACTION_TYPES)}.")
        filters.append(LedgerTransaction.Type == transaction_type)
    if status:
        filters.append(LedgerTransaction.Status == status)
    for condition in filters:
        stmt = stmt.where(condition)
        summary_stmt = summary_stmt.where(condition)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(LedgerTransaction.CreatedDate.desc(), LedgerTransaction.TransactionID.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    sums = {row[0]: Decimal(str(row[1])) for row in db.execute(summary_stmt.group_by(LedgerTransaction.Status)).all()}

    return {
        "data": [serialize_transaction(row) for row in rows],
        "meta": {"total": total, "page": page, "limit": limit, "totalPages": -(-total // limit)},
        "summary": {
            "totalPending": sums.get("pending", Decimal("0")),
            "totalPaid": sums.get("paid", Decimal("0")),
        },
    }


def compute_expected_debt(db: Session, member_id: int) -> Decimal:
    """Debt implied by the ledger: pending charges minus recorded payments."""
    pending_charges = db.execute(
        select(func.coalesce(func.sum(LedgerTransaction.Amount), 0))
        .where(LedgerTransaction.MemberID == member_id)
        .where(LedgerTransaction.Type.in_(CHARGE_TYPES))
        .where(LedgerTransaction.Status == "pending")
    ).scalar_one()
    payments = db.execute(
        select(func.coalesce(func.sum(LedgerTransaction.Amount), 0))
        .where(LedgerTransaction.MemberID == member_id)
        .where(LedgerTransaction.Type == "Payment")
    ).scalar_one()
    return Decimal(str(pending_charges)) - Decimal(str(payments))


def find_debt_mismatches(db: Session) -> list[dict]:
    mismatches = []
    for member in db.execute(select(Member).order_by(Member.MemberID)).scalars().all():
        expected = compute_expected_debt(db, member.MemberID).quantize(Decimal("0.01"))
        actual = Decimal(str(member.TotalDebt or 0)).quantize(Decimal("0.01"))
        if expected != actual:
            mismatches.append(
                {
                    "memberID": member.MemberID,
                    "fullName": member.FullName,
                    "totalDebt": actual,
                    "expectedDebt": expected,
                    "difference": actual - expected,
                }
            )
    return mismatches


def serialize_transaction(entry: LedgerTransaction) -> dict:
    return {
        "transactionID": entry.TransactionID,
        "memberID": entry.MemberID,
        "rentalID": entry.RentalID,
        "amount": entry.Amount,
        "type": entry.Type,
        "status": entry.Status,
        "workflowStep": entry.WorkflowStep,
        "method": entry.Method,
        "description": entry.Description,
        "createdDate": entry.CreatedDate,
        "updatedDate": entry.UpdatedDate,
    }


def _require_member(db: Session, member_id: int) -> Member:
    member = db.get(Member, member_id)
    if not member:
        raise NotFoundError("Member not found")
    return member
