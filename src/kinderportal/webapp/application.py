"""FastAPI backend for the KinderPortal kindergarten administration app.

Every request resolves the session cookie first, then lets the
:class:`~kinderportal.access.AccessEvaluator` compute what the caller may see,
and only then runs the already scoped query. Use ``uvicorn
kinderportal.webapp:create_app --factory`` to serve it.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlmodel import Session, select
from werkzeug.security import check_password_hash

from ..access import AccessEvaluator
from ..exceptions import (
    Forbidden,
    KinderPortalError,
    NoGroupAssigned,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from ..models import MANAGER_ROLES, STAFF_ROLES, Identity, ParentIdentity, TeacherIdentity
from ..ops import HealthMonitor, StructuredLogger
from ..pickup import PickupCodeManager, is_well_formed
from ..security import AttemptLimiter, SessionVerifier
from . import schemas
from .config import Settings
from .dependencies import current_identity, get_evaluator, get_pickup_manager, get_session
from .persistence import Child, Group, PickupRecord, Staff, User, create_db_engine, init_db
from .resources import RESOURCE_ROUTES, build_resource_router, children_router

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------
def _public_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "surname": user.surname,
        "role": user.role.value,
    }


@router.post("/auth/login")
def login(
    payload: schemas.LoginPayload,
    request: Request,
    response: Response,
    session: Session = Depends(get_session),
):
    user = session.exec(select(User).where(User.email == payload.email)).first()
    if user is None or not check_password_hash(user.password_hash, payload.password):
        raise Unauthenticated()
    state = request.app.state
    token = state.verifier.issue(user.id, user.role)
    response.set_cookie(
        state.settings.session_cookie_name,
        token,
        max_age=int(state.settings.session_max_age.total_seconds()),
        httponly=True,
        samesite="lax",
    )
    return {"user": _public_user(user)}


@router.post("/auth/logout")
def logout(request: Request, response: Response):
    response.delete_cookie(request.app.state.settings.session_cookie_name)
    return {"success": True}


@router.get("/auth/session")
def current_session(
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
    evaluator: AccessEvaluator = Depends(get_evaluator),
):
    user = session.get(User, identity.id)
    try:
        scope = evaluator.scope_for_role(identity)
    except NoGroupAssigned:
        children: list = []
    else:
        statement = select(Child).order_by(Child.surname, Child.name)
        if not scope.unrestricted:
            statement = statement.where(Child.id.in_(sorted(scope.child_ids)))
        children = list(session.exec(statement).all())
    body = _public_user(user)
    body["group_id"] = identity.group_id if isinstance(identity, TeacherIdentity) else None
    body["children"] = [
        {"id": child.id, "name": child.name, "surname": child.surname, "group_id": child.group_id}
        for child in children
    ]
    return body


# ---------------------------------------------------------------------------
# Pickup codes
# ---------------------------------------------------------------------------
@router.get("/pickup-code")
def todays_pickup_codes(
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
    manager: PickupCodeManager = Depends(get_pickup_manager),
):
    if not isinstance(identity, ParentIdentity):
        raise Forbidden()
    children = session.exec(
        select(Child).where(Child.parent_id == identity.id).order_by(Child.name)
    ).all()
    if not children:
        raise NotFound("Children")
    return [
        {
            "child_id": child.id,
            "child_name": f"{child.name} {child.surname}",
            "code": manager.get_or_create(child.id).code,
        }
        for child in children
    ]


@router.post("/pickup-code/verify")
def verify_pickup_code(
    payload: schemas.PickupVerifyPayload,
    request: Request,
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
    evaluator: AccessEvaluator = Depends(get_evaluator),
    manager: PickupCodeManager = Depends(get_pickup_manager),
):
    if identity.role not in STAFF_ROLES:
        raise Forbidden()
    if not is_well_formed(payload.code):
        raise ValidationError("Pickup code must be 5 digits", field="code")
    if not evaluator.can_access_child(identity, payload.child_id):
        raise Forbidden()
    audit: StructuredLogger = request.app.state.audit
    verified = manager.verify(payload.child_id, payload.code)
    if verified and payload.authorized_person:
        now = request.app.state.clock()
        session.add(
            PickupRecord(
                child_id=payload.child_id,
                pickup_date=now.date(),
                pickup_time=now,
                authorized_person=payload.authorized_person,
                verification_method="PICKUP_CODE",
            )
        )
        session.commit()
    audit.log(
        "pickup_code_verified" if verified else "pickup_code_rejected",
        child_id=payload.child_id,
        staff_id=identity.id,
    )
    return {"success": verified}


def _check_cron_secret(settings: Settings, authorization: Optional[str]) -> None:
    if not settings.cron_secret:
        return
    expected = f"Bearer {settings.cron_secret}"
    if not hmac.compare_digest((authorization or "").encode("utf-8"), expected.encode("utf-8")):
        raise Unauthenticated()


@router.api_route("/cron/generate-pickup-codes", methods=["GET", "POST"])
def generate_pickup_codes(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    manager: PickupCodeManager = Depends(get_pickup_manager),
):
    state = request.app.state
    _check_cron_secret(state.settings, authorization)
    count = manager.sweep()
    state.health.record_sweep(count)
    state.audit.log("pickup_code_sweep", count=count)
    return {"message": f"Generated {count} new pickup codes.", "count": count}


# ---------------------------------------------------------------------------
# Groups and staff assignment
# ---------------------------------------------------------------------------
@router.get("/groups")
def list_groups(
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
):
    statement = select(Group).order_by(Group.name)
    if isinstance(identity, TeacherIdentity):
        if identity.group_id is None:
            raise NoGroupAssigned()
        statement = statement.where(Group.id == identity.group_id)
    elif isinstance(identity, ParentIdentity):
        group_ids = select(Child.group_id).where(Child.parent_id == identity.id)
        statement = statement.where(Group.id.in_(group_ids))
    return list(session.exec(statement).all())


@router.put("/staff/{staff_id}/group")
def assign_staff_group(
    staff_id: str,
    payload: schemas.GroupAssignment,
    identity: Identity = Depends(current_identity),
    session: Session = Depends(get_session),
):
    if identity.role not in MANAGER_ROLES:
        raise Forbidden()
    staff = session.get(Staff, staff_id)
    if staff is None:
        raise NotFound("Staff member")
    if payload.group_id is not None and session.get(Group, payload.group_id) is None:
        raise ValidationError("Group does not exist", field="groupId")
    staff.group_id = payload.group_id
    session.add(staff)
    session.commit()
    session.refresh(staff)
    return staff


@router.get("/health")
def health(request: Request):
    return request.app.state.health.status()


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------
def _error_body(exc: KinderPortalError) -> dict:
    body = {"error": exc.public_message}
    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    return body


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(KinderPortalError)
    async def _domain_error(request: Request, exc: KinderPortalError) -> JSONResponse:
        if isinstance(exc, Forbidden):
            request.app.state.audit.log("access_denied", method=request.method, path=request.url.path)
        return JSONResponse(_error_body(exc), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
        body = {"error": first.get("msg", "Invalid request")}
        if location:
            body["field"] = ".".join(location)
        return JSONResponse(body, status_code=400)

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> FastAPI:
    settings = settings or Settings.from_env()
    engine = engine or create_db_engine(settings.database_url)
    init_db(engine)

    app = FastAPI(title="KinderPortal")
    app.state.settings = settings
    app.state.engine = engine
    app.state.clock = clock
    app.state.verifier = SessionVerifier(settings.session_secret, max_age=settings.session_max_age)
    app.state.pickup_limiter = AttemptLimiter(
        max_attempts=settings.pickup_max_attempts,
        lockout_minutes=settings.pickup_lockout_minutes,
    )
    app.state.audit = StructuredLogger(path=settings.audit_log_path)
    app.state.health = HealthMonitor(engine)

    install_error_handlers(app)
    app.include_router(router, prefix="/api")
    app.include_router(children_router, prefix="/api")
    for route in RESOURCE_ROUTES:
        app.include_router(build_resource_router(route), prefix="/api")
    logger.info("KinderPortal started with database %s", engine.url.render_as_string(hide_password=True))
    return app


__all__ = ["create_app", "install_error_handlers", "router"]
