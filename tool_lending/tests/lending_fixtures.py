from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from sqlalchemy import func, select

from tool_lending.db.session import create_lending_engine, create_session_factory, init_schema
from tool_lending.models.lending_models import LedgerTransaction, Member, Rental, RentalHistory, Tool
from tool_lending.services.actor_service import Actor
from tool_lending.services.member_service import create_member
from tool_lending.services.tool_service import create_tool


# Consecutive Fridays.
W1 = date(2026, 1, 2)
W2 = date(2026, 1, 9)
W3 = date(2026, 1, 16)
W4 = date(2026, 1, 23)

TODAY = date(2025, 12, 15)
MEMBERSHIP_EXPIRY = date(2099, 12, 31)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def notify(self, rental_id, notification_type, payload):
        if self.fail:
            raise RuntimeError("mail relay down")
        self.sent.append((rental_id, notification_type, payload))


def make_session_factory(database_url: str = "sqlite+pysqlite:///:memory:"):
    engine = create_lending_engine(database_url)
    init_schema(engine)
    return engine, create_session_factory(engine)


def seed_library(session_factory, weekly_price="15.00", **tool_fields) -> SimpleNamespace:
    with session_factory() as db, db.begin():
        admin = create_member(db, full_name="Ada Admin", membership_expiry=MEMBERSHIP_EXPIRY, role="Admin")
        member = create_member(db, full_name="Max Member", membership_expiry=MEMBERSHIP_EXPIRY)
        other = create_member(db, full_name="Olga Other", membership_expiry=MEMBERSHIP_EXPIRY)
        tool = create_tool(db, tool_name="Cordless Drill", weekly_price=Decimal(weekly_price), **tool_fields)
        ids = SimpleNamespace(
            admin=Actor(member_id=admin.MemberID, role="Admin"),
            member=Actor(member_id=member.MemberID, role="Member"),
            other=Actor(member_id=other.MemberID, role="Member"),
            tool_id=tool.ToolID,
        )
    return ids


def member_debt(session_factory, member_id: int) -> Decimal:
    with session_factory() as db:
        return Decimal(str(db.get(Member, member_id).TotalDebt))


def tool_status(session_factory, tool_id: int) -> str:
    with session_factory() as db:
        return db.get(Tool, tool_id).Status


def row_counts(session_factory) -> dict:
    with session_factory() as db:
        return {
            model.__tablename__: db.execute(select(func.count()).select_from(model)).scalar_one()
            for model in (Rental, RentalHistory, LedgerTransaction)
        }
