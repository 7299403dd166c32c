import logging
import time
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from tool_lending.db.deps import get_lending_db, get_rental_engine
from tool_lending.db.session import create_lending_engine, create_session_factory, init_schema
from tool_lending.schemas.ledger import ChargeCreate, MarkPaidRequest, PaymentCreate
from tool_lending.schemas.members import MemberCreate, RenewMembershipRequest
from tool_lending.schemas.rentals import CreateRentalDto, RejectRentalRequest, ReturnRentalRequest
from tool_lending.schemas.tools import ToolConditionCreate, ToolCreate
from tool_lending.services.actor_service import Actor, require_admin, require_owner_or_admin, resolve_actor
from tool_lending.services.errors import LendingError
from tool_lending.services.ledger_service import (
    list_transactions,
    mark_transaction_paid,
    record_charge,
    record_payment,
    serialize_transaction,
)
from tool_lending.services.member_service import create_member, get_member_or_404, renew_membership, serialize_member
from tool_lending.services.notification_service import QueueNotifier, list_pending_notifications
from tool_lending.services.rental_service import RentalLifecycleEngine
from tool_lending.services.tool_service import (
    create_tool,
    delete_tool,
    get_tool_or_404,
    log_tool_condition,
    serialize_condition,
    serialize_tool,
)
from tool_lending.settings import LendingSettings, load_settings


HTTP_LOGGER = logging.getLogger("tool_lending.http")

SETTINGS = load_settings()

app = FastAPI(title="Tool Lending Library")

app.add_middleware(
    CORSMiddleware,
    allow_origins=SETTINGS.cors_allow_origins,
    allow_credentials=SETTINGS.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


def bind_database(session_factory: sessionmaker, settings: LendingSettings = SETTINGS) -> RentalLifecycleEngine:
    """Point the app at a session factory and build the rental engine over it."""
    engine = RentalLifecycleEngine(session_factory, notifier=QueueNotifier(session_factory), settings=settings)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.rental_engine = engine
    return engine


_DB_ENGINE = create_lending_engine(SETTINGS.database_url)
if SETTINGS.auto_create_schema:
    init_schema(_DB_ENGINE)
bind_database(create_session_factory(_DB_ENGINE))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    HTTP_LOGGER.info(
        "%s %s -> %s in %.1fms (actor=%s)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
        getattr(request.state, "actor_id", None),
    )
    return response


@app.exception_handler(LendingError)
async def handle_lending_error(request: Request, exc: LendingError):
    HTTP_LOGGER.warning("%s %s refused (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.kind})


def get_actor(request: Request, x_member_id: Optional[str] = Header(None, alias="X-Member-ID")) -> Actor:
    with request.app.state.session_factory() as db:
        actor = resolve_actor(db, x_member_id)
    if not actor:
        raise HTTPException(status_code=401, detail="Unknown or missing X-Member-ID header.")
    request.state.actor_id = actor.member_id
    return actor


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_lending_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


# -- rentals ---------------------------------------------------------------


@app.post("/api/rentals", status_code=201)
def create_rental(
    payload: CreateRentalDto,
    actor: Actor = Depends(get_actor),
    engine: RentalLifecycleEngine = Depends(get_rental_engine),
):
    return engine.create_rental(
        actor,
        payload.toolID,
        payload.memberID,
        payload.startDate,
        payload.endDate,
        total_price=payload.totalPrice,
    )


@app.get("/api/rentals")
def get_rentals(
    status: Optional[Literal["pending", "active", "completed", "rejected"]] = Query(None),
    member_id: Optional[int] = Query(None, alias="memberID"),
    tool_id: Optional[int] = Query(None, alias="toolID"),
    start_from: Optional[date] = Query(None, alias="startDateFrom"),
    start_to: Optional[date] = Query(None, alias="startDateTo"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    engine: RentalLifecycleEngine = Depends(get_rental_engine),
):
    return engine.list_rentals(
        actor,
        status=status,
        member_id=member_id,
        tool_id=tool_id,
        start_from=start_from,
        start_to=start_to,
        page=page,
        limit=limit,
    )


@app.get("/api/rentals/{rental_id}")
def get_rental(
    rental_id: int,
    actor: Actor = Depends(get_actor),
    engine: RentalLifecycleEngine = Depends(get_rental_engine),
):
    return engine.get_rental(actor, rental_id)


@app.post("/api/rentals/{rental_id}/approve")
def approve_rental(
    rental_id: int,
    actor: Actor = Depends(get_actor),
    engine: RentalLifecycleEngine = Depends(get_rental_engine),
):
    return engine.approve_rental(actor, rental_id)


@app.post("/api/rentals/{rental_id}/reject")
def reject_rental(
    rental_id: int,
    payload: Optional[RejectRentalRequest] = None,
    actor: Actor = Depends(get_actor),
    engine: RentalLifecycleEngine = Depends(get_rental_engine),
):
    return engine.reject_rental(actor, rental_id, comment=payload.comment if payload else None)


@app.post("/api/rentals/{rental_id}/return")
def return_rental(
    rental_id: int,
    payload: Optional[ReturnRentalRequest] = None,
    actor: Actor = Depends(get_actor),
    engine: RentalLifecycleEngine = Depends(get_rental_engine),
):
    payload = payload or ReturnRentalRequest()
    return engine.return_rental(actor, rental_id, actual_end_date=payload.actualEndDate, comment=payload.comment)


@app.delete("/api/rentals/{rental_id}")
def delete_rental(
    rental_id: int,
    actor: Actor = Depends(get_actor),
    engine: RentalLifecycleEngine = Depends(get_rental_engine),
):
    return engine.delete_rental(actor, rental_id)


# -- tools -----------------------------------------------------------------


@app.post("/api/tools", status_code=201)
def create_tool_endpoint(
    payload: ToolCreate,
    request: Request,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    require_admin(actor, "add tools")
    tool = create_tool(
        db,
        tool_name=payload.toolName,
        weekly_price=payload.weeklyPrice,
        description=payload.description,
        maintenance_importance=payload.maintenanceImportance,
        maintenance_interval=payload.maintenanceInterval,
        last_maintenance_date=payload.lastMaintenanceDate,
        status=payload.status,
    )
    db.commit()
    return serialize_tool(tool, date.today(), request.app.state.settings.maintenance_blocking_levels)


@app.get("/api/tools/{tool_id}")
def get_tool(
    tool_id: int,
    request: Request,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    tool = get_tool_or_404(db, tool_id)
    payload = serialize_tool(tool, date.today(), request.app.state.settings.maintenance_blocking_levels)
    payload["conditions"] = [serialize_condition(condition) for condition in tool.Conditions]
    return payload


@app.delete("/api/tools/{tool_id}")
def delete_tool_endpoint(
    tool_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    require_admin(actor, "delete tools")
    delete_tool(db, tool_id)
    db.commit()
    return {"message": "Deleted"}


@app.post("/api/tools/{tool_id}/conditions", status_code=201)
def add_tool_condition(
    tool_id: int,
    payload: ToolConditionCreate,
    request: Request,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    require_admin(actor, "log tool conditions")
    condition = log_tool_condition(
        db,
        tool_id,
        payload.statusAtTime,
        actor.member_id,
        comment=payload.comment,
        cost=payload.cost,
        today=date.today(),
    )
    db.commit()
    return serialize_condition(condition)


# -- members ---------------------------------------------------------------


@app.post("/api/members", status_code=201)
def create_member_endpoint(
    payload: MemberCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    require_admin(actor, "add members")
    member = create_member(
        db,
        full_name=payload.fullName,
        membership_expiry=payload.membershipExpiry,
        email=payload.email,
        role=payload.role,
    )
    db.commit()
    return serialize_member(member)


@app.get("/api/members/{member_id}")
def get_member(
    member_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    require_owner_or_admin(actor, member_id)
    return serialize_member(get_member_or_404(db, member_id))


@app.post("/api/members/{member_id}/renew")
def renew_member(
    member_id: int,
    payload: RenewMembershipRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    require_admin(actor, "renew memberships")
    member = renew_membership(db, member_id, payload.months, Decimal(str(payload.amount)), today=date.today())
    db.commit()
    return serialize_member(member)


# -- ledger ----------------------------------------------------------------


@app.get("/api/transactions")
def get_transactions(
    member_id: Optional[int] = Query(None, alias="memberID"),
    transaction_type: Optional[Literal["Rental", "MembershipFee", "Repair", "Payment"]] = Query(None, alias="type"),
    status: Optional[Literal["pending", "paid"]] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    if not actor.is_admin:
        member_id = actor.member_id
    return list_transactions(
        db,
        member_id=member_id,
        transaction_type=transaction_type,
        status=status,
        page=page,
        limit=limit,
    )


@app.post("/api/transactions/payments", status_code=201)
def create_payment(
    payload: PaymentCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    require_admin(actor, "record payments")
    entry = record_payment(db, payload.memberID, Decimal(str(payload.amount)), payload.method, payload.description)
    db.commit()
    return serialize_transaction(entry)


@app.post("/api/transactions/charges", status_code=201)
def create_charge(
    payload: ChargeCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    require_admin(actor, "record charges")
    entry = record_charge(db, payload.memberID, Decimal(str(payload.amount)), payload.type, payload.description)
    db.commit()
    return serialize_transaction(entry)


@app.post("/api/transactions/{transaction_id}/pay")
def pay_transaction(
    transaction_id: int,
    payload: Optional[MarkPaidRequest] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    require_admin(actor, "mark transactions paid")
    entry = mark_transaction_paid(db, transaction_id, payload.method if payload else None)
    db.commit()
    return serialize_transaction(entry)


@app.get("/api/notifications/pending")
def get_pending_notifications(
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_lending_db),
):
    require_admin(actor, "read the notification queue")
    return list_pending_notifications(db)
