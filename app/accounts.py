"""Account routes and session dependencies."""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from app.schemas import (
    AuthResponse,
    Credentials,
    EmailRequest,
    PermissionResponse,
    SessionResponse,
)
from services.auth import AuthService, Session, build_default_auth_service
from settings import get_settings

router = APIRouter(prefix="/auth", tags=["auth"])


def get_auth_service() -> AuthService:
    return build_default_auth_service()


def _request_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(get_settings().auth_cookie_name)


def get_session(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
) -> Optional[Session]:
    return auth.load_session(_request_token(request))


def require_session(session: Optional[Session] = Depends(get_session)) -> Session:
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
    return session


def require_role(*roles: str) -> Callable[..., Session]:
    """Dependency factory rejecting sessions whose profile role is not in ``roles``."""

    def dependency(session: Session = Depends(require_session)) -> Session:
        if not session.has_role(roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of the roles: {', '.join(roles)}.",
            )
        return session

    return dependency


def _session_response(session: Session) -> SessionResponse:
    return SessionResponse(
        uid=session.user.uid,
        email=session.user.email,
        profile=session.profile,
        needs_onboarding=session.needs_onboarding,
    )


@router.post("/sign-up", response_model=AuthResponse, summary="Create an account.")
def sign_up(
    credentials: Credentials,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    result = auth.sign_up(credentials.email, credentials.password)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return AuthResponse(success=True)


@router.post("/sign-in", response_model=AuthResponse, summary="Start a session.")
def sign_in(
    credentials: Credentials,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    result = auth.sign_in(credentials.email, credentials.password)
    if not result.success or result.token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.error)
    response.set_cookie(
        get_settings().auth_cookie_name,
        result.token,
        httponly=True,
        samesite="lax",
    )
    return AuthResponse(success=True)


@router.post("/sign-out", response_model=AuthResponse, summary="End the current session.")
def sign_out(
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    token = _request_token(request)
    if token:
        auth.sign_out(token)
    response.delete_cookie(get_settings().auth_cookie_name)
    return AuthResponse(success=True)


@router.post("/reset-password", response_model=AuthResponse, summary="Send a password reset email.")
def reset_password(
    body: EmailRequest,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    result = auth.reset_password(body.email)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return AuthResponse(success=True)


@router.get("/session", response_model=SessionResponse, summary="Describe the current session.")
async def current_session(session: Session = Depends(require_session)) -> SessionResponse:
    return _session_response(session)


@router.post(
    "/onboarding-complete",
    response_model=SessionResponse,
    summary="Mark onboarding as finished for the current user.",
)
def onboarding_complete(
    session: Session = Depends(require_session),
    auth: AuthService = Depends(get_auth_service),
) -> SessionResponse:
    return _session_response(auth.set_onboarding_complete(session))


@router.get(
    "/permissions/{permission}",
    response_model=PermissionResponse,
    summary="Check whether the current user holds a permission.",
)
async def check_permission(
    permission: str,
    session: Session = Depends(require_session),
) -> PermissionResponse:
    return PermissionResponse(permission=permission, granted=session.has_permission(permission))
