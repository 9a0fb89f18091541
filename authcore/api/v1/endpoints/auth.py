"""
Auth endpoints: OTP login, token refresh, anonymous sessions and logout.
"""

from fastapi import APIRouter, Depends, Request, Response, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from authcore.api.v1.deps import (
    client_ip,
    get_current_identity,
    get_current_user,
    get_services,
    user_agent,
)
from authcore.schemas.auth import (
    AnonymousSessionRequest,
    AnonymousSessionResponse,
    RequestOtpRequest,
    RequestOtpResponse,
    VerifyOtpRequest,
)
from authcore.schemas.token import AuthResponse, LogoutRequest, RefreshRequest
from authcore.schemas.user import CallerRead
from authcore.services.container import AuthServices
from authcore.services.identity import CallerIdentity

# Rate limiter, keyed by client IP
limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/otp/request", response_model=RequestOtpResponse, response_model_exclude_none=True)
@limiter.limit("5/hour")
async def request_otp(
    request: Request,
    body: RequestOtpRequest,
    services: AuthServices = Depends(get_services),
) -> RequestOtpResponse:
    """Send a one-time code to the phone number."""
    return await services.otp_issuer.request_otp(
        body.phone,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
        device_info=body.device_info,
    )


@router.post("/otp/verify", response_model=AuthResponse)
@limiter.limit("10/hour")
async def verify_otp(
    request: Request,
    body: VerifyOtpRequest,
    services: AuthServices = Depends(get_services),
) -> AuthResponse:
    """Exchange a valid code for an access/refresh token pair."""
    return await services.otp_verifier.verify_otp(
        body.phone,
        body.code,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
        device_info=body.device_info,
    )


@router.post("/token/refresh", response_model=AuthResponse)
async def refresh_tokens(
    request: Request,
    body: RefreshRequest,
    services: AuthServices = Depends(get_services),
) -> AuthResponse:
    return await services.refresh_manager.refresh(
        body.refresh_token,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )


@router.post(
    "/anonymous",
    response_model=AnonymousSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("10/hour")
async def create_anonymous_session(
    request: Request,
    body: AnonymousSessionRequest | None = None,
    services: AuthServices = Depends(get_services),
) -> AnonymousSessionResponse:
    """Start an anonymous session; no refresh token is issued."""
    return await services.session_manager.create_anonymous_session(
        ip_address=client_ip(request),
        device_info=body.device_info if body else None,
    )


@router.delete("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    body: LogoutRequest | None = None,
    identity: CallerIdentity = Depends(get_current_user),
    services: AuthServices = Depends(get_services),
) -> Response:
    """Revoke the given refresh token, or every token of the caller if none is given."""
    await services.refresh_manager.logout(identity.id, body.refresh_token if body else None)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/logout/all", status_code=status.HTTP_204_NO_CONTENT)
async def logout_all(
    identity: CallerIdentity = Depends(get_current_user),
    services: AuthServices = Depends(get_services),
) -> Response:
    """Revoke refresh tokens on all devices."""
    await services.refresh_manager.logout(identity.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=CallerRead)
async def read_current_identity(
    identity: CallerIdentity = Depends(get_current_identity),
) -> CallerIdentity:
    """Return the resolved caller, registered or anonymous."""
    return identity
