"""Auth routes: signup, login, token refresh, logout, email verification and password reset.

The access token is returned in the body. The refresh token is set as an
HttpOnly cookie scoped to the auth path; refresh and logout also accept it in
the JSON body for clients without cookies.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Cookie, Depends, Response, status

from studio.api.deps import (
    CurrentUser,
    SettingsDep,
    get_auth_service,
    get_client_context,
    get_session_manager,
)
from studio.core.config import Settings
from studio.core.security import AuthTokens
from studio.schemas.auth import (
    AuthOut,
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    RefreshRequest,
    ResetPasswordRequest,
    SignupOut,
    SignupRequest,
    TokenOut,
    UserOut,
    VerifyEmailRequest,
)
from studio.schemas.common import Envelope
from studio.services.auth import AuthService
from studio.services.sessions import ClientContext, SessionManager
from studio.services.views import UserView

router = APIRouter()

REFRESH_COOKIE = "refreshToken"

AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
SessionsDep = Annotated[SessionManager, Depends(get_session_manager)]
ClientDep = Annotated[ClientContext, Depends(get_client_context)]
RefreshCookie = Annotated[str | None, Cookie(alias=REFRESH_COOKIE)]


def _set_refresh_cookie(response: Response, tokens: AuthTokens, settings: Settings, max_age: int) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        tokens.refresh_token,
        max_age=max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path=settings.auth_cookie_path,
    )


def _clear_refresh_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        REFRESH_COOKIE,
        path=settings.auth_cookie_path,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


@router.post("/signup", response_model=Envelope[SignupOut], status_code=status.HTTP_201_CREATED)
async def signup(
    body: SignupRequest,
    response: Response,
    auth: AuthServiceDep,
    sessions: SessionsDep,
    settings: SettingsDep,
    client: ClientDep,
) -> Envelope[SignupOut]:
    """Create an account. The verification email is sent as a side effect."""
    result = await auth.signup(
        body.email, body.password, body.first_name, body.last_name, client=client
    )
    view = await auth.get_current_user(result.user.id)
    _set_refresh_cookie(response, result.tokens, settings, sessions.refresh_ttl_seconds)
    return Envelope(
        message="Account created. Please check your email to verify your account.",
        data=SignupOut(
            user=UserOut.from_view(view),
            access_token=result.tokens.access_token,
            expires_in=result.tokens.expires_in,
            requires_verification=result.requires_verification,
        ),
    )


@router.post("/login", response_model=Envelope[AuthOut])
async def login(
    body: LoginRequest,
    response: Response,
    auth: AuthServiceDep,
    sessions: SessionsDep,
    settings: SettingsDep,
    client: ClientDep,
) -> Envelope[AuthOut]:
    """
    Authenticate with email and password; returns a JWT access token.
    Include the token in the Authorization header as: Bearer <accessToken>
    """
    result = await sessions.login(body.email, body.password, client)
    view = await auth.get_current_user(result.user.id)
    _set_refresh_cookie(response, result.tokens, settings, sessions.refresh_ttl_seconds)
    return Envelope(
        data=AuthOut(
            user=UserOut.from_view(view),
            access_token=result.tokens.access_token,
            expires_in=result.tokens.expires_in,
        )
    )


@router.post("/refresh", response_model=Envelope[TokenOut])
async def refresh(
    response: Response,
    sessions: SessionsDep,
    settings: SettingsDep,
    client: ClientDep,
    refresh_cookie: RefreshCookie = None,
    body: Annotated[RefreshRequest | None, Body()] = None,
) -> Envelope[TokenOut]:
    """Rotate the refresh token (cookie first, then body) and return a new access token."""
    raw = refresh_cookie or (body.refresh_token if body else None)
    tokens = await sessions.refresh(raw or "", client)
    _set_refresh_cookie(response, tokens, settings, sessions.refresh_ttl_seconds)
    return Envelope(data=TokenOut(access_token=tokens.access_token, expires_in=tokens.expires_in))


@router.post("/logout", response_model=Envelope[dict])
async def logout(
    identity: CurrentUser,
    response: Response,
    sessions: SessionsDep,
    settings: SettingsDep,
    refresh_cookie: RefreshCookie = None,
    body: Annotated[RefreshRequest | None, Body()] = None,
) -> Envelope[dict]:
    """End the presented session, or every session of the caller when no refresh token is sent."""
    raw = refresh_cookie or (body.refresh_token if body else None)
    await sessions.logout(identity.id, raw)
    _clear_refresh_cookie(response, settings)
    return Envelope(message="Logged out successfully")


@router.post("/verify-email", response_model=Envelope[dict])
async def verify_email(body: VerifyEmailRequest, auth: AuthServiceDep) -> Envelope[dict]:
    await auth.verify_email(body.token)
    return Envelope(message="Email verified successfully. You can now log in.")


@router.post("/resend-verification", response_model=Envelope[dict])
async def resend_verification(body: EmailRequest, auth: AuthServiceDep) -> Envelope[dict]:
    """Same response whether or not an unverified account exists for the email."""
    await auth.resend_verification(body.email)
    return Envelope(
        message="If an unverified account exists with this email, a verification link has been sent."
    )


@router.post("/forgot-password", response_model=Envelope[dict])
async def forgot_password(body: EmailRequest, auth: AuthServiceDep) -> Envelope[dict]:
    """Same response whether or not an account exists for the email."""
    await auth.forgot_password(body.email)
    return Envelope(
        message="If an account exists with this email, a password reset link has been sent."
    )


@router.post("/reset-password", response_model=Envelope[dict])
async def reset_password(body: ResetPasswordRequest, auth: AuthServiceDep) -> Envelope[dict]:
    await auth.reset_password(body.token, body.password)
    return Envelope(
        message="Password reset successfully. You can now log in with your new password."
    )


@router.post("/change-password", response_model=Envelope[dict])
async def change_password(
    body: ChangePasswordRequest,
    identity: CurrentUser,
    response: Response,
    auth: AuthServiceDep,
    settings: SettingsDep,
) -> Envelope[dict]:
    """Change the password of the caller. All sessions end, including this one."""
    await auth.change_password(identity.id, body.current_password, body.new_password)
    _clear_refresh_cookie(response, settings)
    return Envelope(message="Password changed successfully. Please log in again.")


@router.get("/me", response_model=Envelope[UserOut])
async def me(identity: CurrentUser, auth: AuthServiceDep) -> Envelope[UserOut]:
    view: UserView = await auth.get_current_user(identity.id)
    return Envelope(data=UserOut.from_view(view))
