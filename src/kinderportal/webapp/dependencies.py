"""FastAPI dependencies shared by every router."""
from __future__ import annotations

from typing import Iterator

from fastapi import Depends, Request
from sqlmodel import Session

from ..access import AccessEvaluator, resolve_identity
from ..models import Identity, SessionClaims
from ..pickup import PickupCodeManager
from .persistence import iter_session


def get_session(request: Request) -> Iterator[Session]:
    yield from iter_session(request.app.state.engine)


def current_claims(request: Request) -> SessionClaims:
    settings = request.app.state.settings
    token = request.cookies.get(settings.session_cookie_name)
    return request.app.state.verifier.verify(token)


def current_identity(
    claims: SessionClaims = Depends(current_claims),
    session: Session = Depends(get_session),
) -> Identity:
    return resolve_identity(session, claims)


def get_evaluator(session: Session = Depends(get_session)) -> AccessEvaluator:
    return AccessEvaluator(session)


def get_pickup_manager(request: Request, session: Session = Depends(get_session)) -> PickupCodeManager:
    state = request.app.state
    return PickupCodeManager(session, clock=state.clock, limiter=state.pickup_limiter)


__all__ = [
    "current_claims",
    "current_identity",
    "get_evaluator",
    "get_pickup_manager",
    "get_session",
]
