from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from authix.api.schemas import (
    Envelope,
    LoginRequest,
    OneTimeTokenConsumeRequest,
    OnlineUsersResponse,
    ProfileResponse,
    RegisterRequest,
    SendCodeRequest,
    TokenResponse,
    VerifyCodeRequest,
)
from authix.logging import get_logger
from authix.service.errors import InvalidCredentialsError
from authix.service.runtime import get_runtime
from authix.storage.models import TokenClaims

logger = get_logger(__name__)

router = APIRouter(prefix="/auth")


async def get_claims(authorization: Optional[str] = Header(None)) -> TokenClaims:
    """Resolve the caller from an ``Authorization: Bearer <access token>`` header."""
    runtime = get_runtime()
    return runtime.auth.authenticate(authorization)


def _clamp_page_size(page_size: int, maximum: int) -> int:
    return max(1, min(page_size, maximum))


@router.post("/register", response_model=Envelope, tags=["auth"])
async def register(body: RegisterRequest):
    """Create an account and return its numeric id.

    ``register_type`` is ``password`` (identifier is a username), ``sms``
    (phone) or ``email``. The latter two require a successful
    ``register``-scene code check within the code lifetime.

    Raises:
        400: Malformed identifier or password, unknown type, or expired code
        409: Identifier already registered
    """
    runtime = get_runtime()
    user_id = await runtime.auth.register(
        body.register_type, body.identifier, body.credential
    )
    return Envelope.ok(user_id)


@router.post("/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Authenticate with a password or a login-scene code and return a token pair.

    Raises:
        400: Unknown login type
        401: Credentials rejected
    """
    runtime = get_runtime()
    pair = await runtime.auth.login(body.login_type, body.identifier, body.credential)
    return Envelope.ok(TokenResponse.from_pair(pair))


@router.post("/code/send", response_model=Envelope, tags=["codes"])
async def send_code(body: SendCodeRequest):
    runtime = get_runtime()
    code = await runtime.auth.send_code(body.identifier, body.verify_type)
    data = code if runtime.settings.reveal_verification_code else None
    return Envelope.ok(data, message="verification code sent")


@router.post("/code/verify", response_model=Envelope, tags=["codes"])
async def verify_code(body: VerifyCodeRequest):
    """Check a code; ``verify_type`` is the scene, ``login`` or ``register``."""
    runtime = get_runtime()
    matched = await runtime.auth.verify_code(
        body.identifier, body.credential, body.verify_type
    )
    if not matched:
        raise InvalidCredentialsError("invalid verification code")
    return Envelope.ok(message="verification code accepted")


@router.get("/token/refresh", response_model=Envelope, tags=["tokens"])
async def refresh_token(authorization: Optional[str] = Header(None)):
    """Mint a new access token from ``Authorization: Bearer <refresh token>``."""
    runtime = get_runtime()
    refresh = runtime.auth.bearer_token(authorization)
    pair = await runtime.auth.refresh(refresh)
    return Envelope.ok(TokenResponse.from_pair(pair))


@router.post("/logout", response_model=Envelope, tags=["auth"])
async def logout(claims: TokenClaims = Depends(get_claims)):
    runtime = get_runtime()
    await runtime.auth.logout(claims.sub)
    return Envelope.ok(message="logged out")


@router.get("/me", response_model=Envelope, tags=["users"])
async def get_profile(claims: TokenClaims = Depends(get_claims)):
    runtime = get_runtime()
    profile = runtime.auth.profile(int(claims.sub))
    return Envelope.ok(ProfileResponse.from_profile(profile))


@router.delete("/me", response_model=Envelope, tags=["users"])
async def delete_account(claims: TokenClaims = Depends(get_claims)):
    runtime = get_runtime()
    await runtime.auth.delete_account(int(claims.sub))
    return Envelope.ok(message="account deleted")


@router.get("/online/count", response_model=Envelope, tags=["sessions"])
async def online_count(claims: TokenClaims = Depends(get_claims)):
    runtime = get_runtime()
    return Envelope.ok(await runtime.auth.online_count())


@router.get("/online/users", response_model=Envelope, tags=["sessions"])
async def online_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20),
    claims: TokenClaims = Depends(get_claims),
):
    """List online users ordered by session expiry; ``page_size`` is clamped to 1..MAX_PAGE_SIZE."""
    runtime = get_runtime()
    size = _clamp_page_size(page_size, runtime.settings.max_page_size)
    result = await runtime.auth.online_page(page, size)
    return Envelope.ok(
        OnlineUsersResponse(
            total=result.total,
            records=[ProfileResponse.from_profile(p) for p in result.records],
        )
    )


@router.get("/token/one-time", response_model=Envelope, tags=["tokens"])
async def issue_one_time_token(claims: TokenClaims = Depends(get_claims)):
    runtime = get_runtime()
    token = await runtime.auth.issue_one_time_token(claims)
    return Envelope.ok(token)


@router.post("/token/one-time/consume", response_model=Envelope, tags=["tokens"])
async def consume_one_time_token(body: OneTimeTokenConsumeRequest):
    """Redeem a one-time token; a second redemption of the same token fails."""
    runtime = get_runtime()
    tenant_id = body.tenant_id or runtime.settings.default_tenant_id
    consumed = await runtime.auth.consume_one_time_token(tenant_id, body.user_id, body.token)
    if not consumed:
        logger.warning("one_time_token_rejected", user_id=body.user_id)
        raise InvalidCredentialsError("invalid or expired one-time token")
    return Envelope.ok(message="one-time token accepted")
