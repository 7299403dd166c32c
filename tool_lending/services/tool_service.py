from __future__ import annotations

import calendar
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tool_lending.models.lending_models import Rental, Tool, ToolCondition
from tool_lending.services.errors import ConflictError, InvalidStateError, NotFoundError, RentalValidationError
from tool_lending.services.rental_rules import (
    DEFAULT_BLOCKING_LEVELS,
    MAINTENANCE_IMPORTANCE_LEVELS,
    is_maintenance_blocked,
)


TOOL_STATUSES = ("available", "rented", "maintenance", "unavailable")
CONDITION_STATUSES = ("available", "maintenance", "unavailable")
NON_TERMINAL_STATUSES = ("pending", "active")

LOGGER = logging.getLogger("tool_lending.tools")


def add_months(value: date, months: int) -> date:
    year = value.year + (value.month - 1 + months) // 12
    month = (value.month - 1 + months) % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(value.day, last_day))


def next_maintenance_due(tool: Tool) -> Optional[date]:
    if not tool.MaintenanceInterval or tool.MaintenanceInterval <= 0:
        return None
    if not tool.LastMaintenanceDate:
        return None
    return add_months(tool.LastMaintenanceDate, tool.MaintenanceInterval)


def get_tool_or_404(db: Session, tool_id: int) -> Tool:
    tool = db.get(Tool, tool_id)
    if not tool:
        raise NotFoundError("Tool not found")
    return tool


def create_tool(
    db: Session,
    *,
    tool_name: str,
    weekly_price: Decimal | float,
    description: str | None = None,
    maintenance_importance: str = "low",
    maintenance_interval: int | None = None,
    last_maintenance_date: date | None = None,
    status: str = "available",
) -> Tool:
    importance = (maintenance_importance or "low").lower()
    if importance not in MAINTENANCE_IMPORTANCE_LEVELS:
        raise RentalValidationError("maintenanceImportance must be low, medium or high.")
    if status not in TOOL_STATUSES or status == "rented":
        raise RentalValidationError("A new tool must be available, maintenance or unavailable.")
    if Decimal(str(weekly_price)) < 0:
        raise RentalValidationError("weeklyPrice must not be negative.")

    tool = Tool(
        ToolName=tool_name.strip(),
        Description=description,
        WeeklyPrice=Decimal(str(weekly_price)),
        MaintenanceImportance=importance,
        MaintenanceInterval=maintenance_interval,
        LastMaintenanceDate=last_maintenance_date,
        Status=status,
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(tool)
    db.flush()
    return tool


def delete_tool(db: Session, tool_id: int) -> None:
    tool = get_tool_or_404(db, tool_id)
    open_rentals = db.execute(
        select(func.count(Rental.RentalID))
        .where(Rental.ToolID == tool_id)
        .where(Rental.Status.in_(NON_TERMINAL_STATUSES))
    ).scalar_one()
    if open_rentals:
        raise ConflictError(f"Cannot delete tool with {open_rentals} pending or active rental(s).")
    history = db.execute(select(func.count(Rental.RentalID)).where(Rental.ToolID == tool_id)).scalar_one()
    if history:
        raise ConflictError("Cannot delete tool with rental history; mark it unavailable instead.")
    db.delete(tool)
    LOGGER.info("Deleted tool %s (%s)", tool_id, tool.ToolName)


def log_tool_condition(
    db: Session,
    tool_id: int,
    status_at_time: str,
    actor_id: int | None,
    comment: str | None = None,
    cost: Decimal | float | None = None,
    today: date | None = None,
) -> ToolCondition:
    """Record a maintenance/condition check for a tool.

    A check reporting ``maintenance`` or ``available`` counts as a service and
    resets ``LastMaintenanceDate``. The tool status follows the reported status,
    except while it is rented out: the rental lifecycle owns that state.
    """
    if status_at_time not in CONDITION_STATUSES:
        raise RentalValidationError("statusAtTime must be available, maintenance or unavailable.")

    tool = db.execute(select(Tool).where(Tool.ToolID == tool_id).with_for_update()).scalars().first()
    if not tool:
        raise NotFoundError("Tool not found")
    if tool.Status == "rented" and status_at_time != "available":
        raise InvalidStateError("Tool is currently rented; record the condition after it is returned.")

    condition = ToolCondition(
        ToolID=tool_id,
        ActorID=actor_id,
        StatusAtTime=status_at_time,
        Comment=comment,
        Cost=Decimal(str(cost)) if cost is not None else None,
        CreatedAt=datetime.now(),
    )
    db.add(condition)

    if status_at_time in {"maintenance", "available"}:
        tool.LastMaintenanceDate = today or date.today()
    if tool.Status != "rented":
        tool.Status = status_at_time
    tool.UpdatedDate = datetime.now()
    db.flush()
    LOGGER.info("Condition %s logged for tool %s by %s", status_at_time, tool_id, actor_id)
    return condition


def serialize_tool(
    tool: Tool,
    today: date | None = None,
    blocking_levels: Sequence[str] = DEFAULT_BLOCKING_LEVELS,
) -> dict:
    current_day = today or date.today()
    return {
        "toolID": tool.ToolID,
        "toolName": tool.ToolName,
        "description": tool.Description,
        "status": tool.Status,
        "weeklyPrice": tool.WeeklyPrice,
        "maintenanceImportance": tool.MaintenanceImportance,
        "maintenanceInterval": tool.MaintenanceInterval,
        "lastMaintenanceDate": tool.LastMaintenanceDate,
        "nextMaintenanceDue": next_maintenance_due(tool),
        "maintenanceBlocked": is_maintenance_blocked(
            tool.MaintenanceImportance,
            tool.MaintenanceInterval,
            tool.LastMaintenanceDate,
            current_day,
            blocking_levels,
        ),
        "createdDate": tool.CreatedDate,
        "updatedDate": tool.UpdatedDate,
    }


def serialize_condition(condition: ToolCondition) -> dict:
    return {
        "conditionID": condition.ConditionID,
        "toolID": condition.ToolID,
        "actorID": condition.ActorID,
        "statusAtTime": condition.StatusAtTime,
        "comment": condition.Comment,
        "cost": condition.Cost,
        "createdAt": condition.CreatedAt,
    }
