"""Routers for the children and every record type tied to a child.

All per-child routers come from :func:`build_resource_router`; the only thing
that differs between them is the table, the payload schemas and the
:class:`~kinderportal.access.ResourcePolicy` kind.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, select

from ..access import AccessEvaluator, policy_for
from ..exceptions import NotFound, ValidationError
from ..models import MANAGER_ROLES, Action, Identity, PaymentStatus, Role
from . import schemas
from .dependencies import current_identity, get_evaluator, get_session
from .persistence import (
    Attendance,
    AuthorizedPerson,
    BehavioralInfo,
    Child,
    ChronicDisease,
    Consent,
    DailyPickupCode,
    Medication,
    Payment,
    PickupRecord,
    User,
)

UpdateHook = Callable[[Identity, Any, Dict[str, Any], datetime], Dict[str, Any]]
CreateHook = Callable[[Identity, Dict[str, Any], datetime], Dict[str, Any]]
ListFilter = Callable[[Any, Mapping[str, str]], Any]


@dataclass(frozen=True)
class ResourceRoute:
    """Wiring for one per-child resource.

    ``natural_key`` turns creation into an upsert on those columns.
    """

    kind: str
    path: str
    model: Type[SQLModel]
    create_schema: Type[BaseModel]
    update_schema: Type[BaseModel]
    order_by: Any = None
    on_create: Optional[CreateHook] = None
    on_update: Optional[UpdateHook] = None
    list_filter: Optional[ListFilter] = None
    natural_key: Tuple[str, ...] = ()


def load_child_for(
    session: Session,
    evaluator: AccessEvaluator,
    identity: Identity,
    kind: str,
    action: Action,
    child_id: str,
) -> Child:
    """Role check, then existence, then the ownership relation."""

    evaluator.require_role(identity, kind, action)
    child = session.get(Child, child_id)
    if child is None:
        raise ValidationError("Child does not exist", field="childId")
    evaluator.authorize(identity, kind, action, child.id)
    return child


def reject_nulls(model: Type[SQLModel], changes: Dict[str, Any]) -> None:
    """Raise for an explicit ``null`` aimed at a NOT NULL column."""

    columns = model.__table__.columns  # type: ignore[attr-defined]
    for key, value in changes.items():
        if value is None and key in columns and not columns[key].nullable:
            name = to_camel(key)
            raise ValidationError(f"{name} cannot be null", field=name)


def scoped_rows(
    session: Session,
    evaluator: AccessEvaluator,
    identity: Identity,
    route: ResourceRoute,
    child_id: Optional[str],
    params: Mapping[str, str],
) -> List[Any]:
    model = route.model
    evaluator.require_role(identity, route.kind, Action.READ)
    scope = evaluator.scope_for_role(identity)
    statement = select(model)
    if child_id:
        if not scope.unrestricted:
            evaluator.authorize(identity, route.kind, Action.READ, child_id)
        statement = statement.where(model.child_id == child_id)
    elif not scope.unrestricted:
        statement = statement.where(model.child_id.in_(sorted(scope.child_ids)))
    if route.list_filter is not None:
        statement = route.list_filter(statement, params)
    if route.order_by is not None:
        statement = statement.order_by(route.order_by)
    return list(session.exec(statement).all())


def _find_by_key(session: Session, route: ResourceRoute, values: Dict[str, Any]) -> Any:
    statement = select(route.model)
    for column in route.natural_key:
        statement = statement.where(getattr(route.model, column) == values[column])
    return session.exec(statement).first()


def save_new(session: Session, route: ResourceRoute, values: Dict[str, Any]) -> Any:
    """Insert ``values``, or overwrite the row sharing the route's natural key."""

    existing = _find_by_key(session, route, values) if route.natural_key else None
    if existing is None:
        row = route.model(**values)
        session.add(row)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            if not route.natural_key:
                raise
            existing = _find_by_key(session, route, values)
            if existing is None:
                raise
        else:
            session.refresh(row)
            return row
    for key, value in values.items():
        setattr(existing, key, value)
    session.add(existing)
    session.commit()
    session.refresh(existing)
    return existing


def build_resource_router(route: ResourceRoute) -> APIRouter:
    router = APIRouter(prefix=route.path)
    policy = policy_for(route.kind)
    model = route.model
    create_schema = route.create_schema
    update_schema = route.update_schema

    def fetch(session: Session, record_id: str) -> Any:
        row = session.get(model, record_id)
        if row is None:
            raise NotFound(policy.label)
        return row

    @router.get("")
    def list_records(
        request: Request,
        child_id: Optional[str] = Query(default=None, alias="childId"),
        identity: Identity = Depends(current_identity),
        session: Session = Depends(get_session),
        evaluator: AccessEvaluator = Depends(get_evaluator),
    ):
        return scoped_rows(session, evaluator, identity, route, child_id, request.query_params)

    @router.post("", status_code=status.HTTP_201_CREATED)
    def create_record(
        payload: create_schema,
        request: Request,
        identity: Identity = Depends(current_identity),
        session: Session = Depends(get_session),
        evaluator: AccessEvaluator = Depends(get_evaluator),
    ):
        load_child_for(session, evaluator, identity, route.kind, Action.CREATE, payload.child_id)
        values = payload.model_dump()
        if route.on_create is not None:
            values = route.on_create(identity, values, request.app.state.clock())
        return save_new(session, route, values)

    @router.get("/{record_id}")
    def get_record(
        record_id: str,
        identity: Identity = Depends(current_identity),
        session: Session = Depends(get_session),
        evaluator: AccessEvaluator = Depends(get_evaluator),
    ):
        evaluator.require_role(identity, route.kind, Action.READ)
        row = fetch(session, record_id)
        evaluator.authorize(identity, route.kind, Action.READ, row.child_id)
        return row

    @router.put("/{record_id}")
    def update_record(
        record_id: str,
        payload: update_schema,
        request: Request,
        identity: Identity = Depends(current_identity),
        session: Session = Depends(get_session),
        evaluator: AccessEvaluator = Depends(get_evaluator),
    ):
        evaluator.require_role(identity, route.kind, Action.UPDATE)
        row = fetch(session, record_id)
        evaluator.authorize(
            identity, route.kind, Action.UPDATE, row.child_id, author_id=getattr(row, "author_id", None)
        )
        changes = payload.model_dump(exclude_unset=True)
        reject_nulls(model, changes)
        if route.on_update is not None:
            changes = route.on_update(identity, row, changes, request.app.state.clock())
        for key, value in changes.items():
            setattr(row, key, value)
        session.add(row)
        session.commit()
        session.refresh(row)
        return row

    @router.delete("/{record_id}")
    def delete_record(
        record_id: str,
        identity: Identity = Depends(current_identity),
        session: Session = Depends(get_session),
        evaluator: AccessEvaluator = Depends(get_evaluator),
    ):
        evaluator.require_role(identity, route.kind, Action.DELETE)
        row = fetch(session, record_id)
        evaluator.authorize(
            identity, route.kind, Action.DELETE, row.child_id, author_id=getattr(row, "author_id", None)
        )
        session.delete(row)
        session.commit()
        return {"success": True}

    return router


def _stamp_author(identity: Identity, values: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    return {**values, "author_id": identity.id}


def _payment_changes(
    identity: Identity, row: Payment, changes: Dict[str, Any], now: datetime
) -> Dict[str, Any]:
    """Parents may only move the status; amounts and dates stay with managers."""

    if identity.role not in MANAGER_ROLES:
        changes = {key: value for key, value in changes.items() if key in {"status", "paid_date"}}
    if changes.get("status") is PaymentStatus.PAID and row.paid_date is None and "paid_date" not in changes:
        changes["paid_date"] = now.date()
    return changes


def _parse_day(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError("Invalid date", field=field) from None


def _month_bounds(month: str, year: str) -> Tuple[date, date]:
    try:
        first = date(int(year), int(month), 1)
    except ValueError:
        raise ValidationError("Invalid month", field="month") from None
    if first.month == 12:
        return first, date(first.year + 1, 1, 1)
    return first, date(first.year, first.month + 1, 1)


def _attendance_filter(statement: Any, params: Mapping[str, str]) -> Any:
    if params.get("date"):
        statement = statement.where(Attendance.day == _parse_day(params["date"], "date"))
    if params.get("month") and params.get("year"):
        start, end = _month_bounds(params["month"], params["year"])
        statement = statement.where(Attendance.day >= start, Attendance.day < end)
    return statement


def _payment_filter(statement: Any, params: Mapping[str, str]) -> Any:
    # unknown statuses are ignored rather than rejected
    raw = (params.get("status") or "").upper()
    if raw in PaymentStatus.__members__:
        statement = statement.where(Payment.status == PaymentStatus(raw))
    return statement


RESOURCE_ROUTES = (
    ResourceRoute(
        "attendance",
        "/attendances",
        Attendance,
        schemas.AttendanceCreate,
        schemas.AttendanceUpdate,
        order_by=Attendance.day.desc(),
        list_filter=_attendance_filter,
        natural_key=("child_id", "day"),
    ),
    ResourceRoute(
        "consent",
        "/consents",
        Consent,
        schemas.ConsentCreate,
        schemas.ConsentUpdate,
        order_by=Consent.given_at.desc(),
    ),
    ResourceRoute(
        "payment",
        "/payments",
        Payment,
        schemas.PaymentCreate,
        schemas.PaymentUpdate,
        order_by=Payment.due_date.desc(),
        on_update=_payment_changes,
        list_filter=_payment_filter,
    ),
    ResourceRoute(
        "medication",
        "/medications",
        Medication,
        schemas.MedicationCreate,
        schemas.MedicationUpdate,
        order_by=Medication.created_at.desc(),
    ),
    ResourceRoute(
        "chronic_disease",
        "/chronic-diseases",
        ChronicDisease,
        schemas.ChronicDiseaseCreate,
        schemas.ChronicDiseaseUpdate,
        order_by=ChronicDisease.created_at.desc(),
    ),
    ResourceRoute(
        "behavioral_info",
        "/behavioral-info",
        BehavioralInfo,
        schemas.BehavioralInfoCreate,
        schemas.BehavioralInfoUpdate,
        order_by=BehavioralInfo.day.desc(),
        on_create=_stamp_author,
    ),
    ResourceRoute(
        "pickup_record",
        "/pickup",
        PickupRecord,
        schemas.PickupRecordCreate,
        schemas.PickupRecordUpdate,
        order_by=PickupRecord.pickup_date.desc(),
    ),
    ResourceRoute(
        "authorized_person",
        "/authorized-persons",
        AuthorizedPerson,
        schemas.AuthorizedPersonCreate,
        schemas.AuthorizedPersonUpdate,
        order_by=AuthorizedPerson.created_at,
    ),
)


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------
children_router = APIRouter(prefix="/children")

CHILD_RECORD_MODELS = tuple(route.model for route in RESOURCE_ROUTES) + (DailyPickupCode,)


def _fetch_child(session: Session, child_id: str) -> Child:
    child = session.get(Child, child_id)
    if child is None:
        raise NotFound("Child")
    return child


def child_from_path(
    session: Session,
    evaluator: AccessEvaluator,
    identity: Identity,
    kind: str,
    action: Action,
    child_id: str,
) -> Child:
    """Like :func:`load_child_for`, but a missing child is a 404."""

    evaluator.require_role(identity, kind, action)
    child = _fetch_child(session, child_id)
    evaluator.authorize(identity, kind, action, child.id)
    return child


def _require_parent_user(session: Session, parent_id: str) -> None:
    parent = session.get(User, parent_id)
    if parent is None or parent.role is not Role.PARENT:
        raise ValidationError("Parent does not exist", field="parentId")


@children_router.get("")
def list_children(
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
    evaluator: AccessEvaluator = Depends(get_evaluator),
):
    evaluator.require_role(identity, "child", Action.READ)
    scope = evaluator.scope_for_role(identity)
    statement = select(Child).order_by(Child.surname, Child.name)
    if not scope.unrestricted:
        statement = statement.where(Child.id.in_(sorted(scope.child_ids)))
    return list(session.exec(statement).all())


@children_router.post("", status_code=status.HTTP_201_CREATED)
def create_child(
    payload: schemas.ChildCreate,
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
    evaluator: AccessEvaluator = Depends(get_evaluator),
):
    evaluator.require_role(identity, "child", Action.CREATE)
    _require_parent_user(session, payload.parent_id)
    child = Child(**payload.model_dump())
    session.add(child)
    session.commit()
    session.refresh(child)
    return child


@children_router.get("/{child_id}")
def get_child(
    child_id: str,
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
    evaluator: AccessEvaluator = Depends(get_evaluator),
):
    return child_from_path(session, evaluator, identity, "child", Action.READ, child_id)


@children_router.put("/{child_id}")
def update_child(
    child_id: str,
    payload: schemas.ChildUpdate,
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
    evaluator: AccessEvaluator = Depends(get_evaluator),
):
    child = child_from_path(session, evaluator, identity, "child", Action.UPDATE, child_id)
    changes = payload.model_dump(exclude_unset=True)
    reject_nulls(Child, changes)
    for key, value in changes.items():
        setattr(child, key, value)
    session.add(child)
    session.commit()
    session.refresh(child)
    return child


@children_router.delete("/{child_id}")
def delete_child(
    child_id: str,
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
    evaluator: AccessEvaluator = Depends(get_evaluator),
):
    child = child_from_path(session, evaluator, identity, "child", Action.DELETE, child_id)
    for model in CHILD_RECORD_MODELS:
        for row in session.exec(select(model).where(model.child_id == child.id)).all():
            session.delete(row)
    session.delete(child)
    session.commit()
    return {"success": True}


@children_router.get("/{child_id}/authorized-persons")
def list_child_authorized_persons(
    child_id: str,
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
    evaluator: AccessEvaluator = Depends(get_evaluator),
):
    """Active persons only, newest first."""

    child_from_path(session, evaluator, identity, "authorized_person", Action.READ, child_id)
    statement = (
        select(AuthorizedPerson)
        .where(AuthorizedPerson.child_id == child_id, AuthorizedPerson.is_active == True)  # noqa: E712
        .order_by(AuthorizedPerson.created_at.desc())
    )
    return list(session.exec(statement).all())


@children_router.post("/{child_id}/authorized-persons", status_code=status.HTTP_201_CREATED)
def create_child_authorized_person(
    child_id: str,
    payload: schemas.AuthorizedPersonFields,
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
    evaluator: AccessEvaluator = Depends(get_evaluator),
):
    child_from_path(session, evaluator, identity, "authorized_person", Action.CREATE, child_id)
    person = AuthorizedPerson(child_id=child_id, **payload.model_dump())
    session.add(person)
    session.commit()
    session.refresh(person)
    return person


__all__ = [
    "RESOURCE_ROUTES",
    "ResourceRoute",
    "build_resource_router",
    "child_from_path",
    "children_router",
    "load_child_for",
    "reject_nulls",
    "save_new",
    "scoped_rows",
]
