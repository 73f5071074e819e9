import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import jwt
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError
from psycopg import AsyncConnection
from psycopg.errors import UniqueViolation
from pydantic import BaseModel, Field

from .chat.registry import SessionRegistry, get_session_registry
from .config import settings
from .database import get_db_connection
from .identity import Identity

logger = logging.getLogger(__name__)

http_bearer = HTTPBearer(auto_error=False)
router = APIRouter(prefix="/auth", tags=["auth"])

ACCESS_TOKEN_TTL_HOURS = 24


class AuthUserResponse(BaseModel):
    id: UUID
    email: str
    created_at: datetime


class AuthTokenResponse(BaseModel):
    access_token: str
    user: AuthUserResponse


class CredentialsRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RegisterRequest(CredentialsRequest):
    password: str = Field(min_length=8, max_length=128)


def issue_access_token(user_id: UUID, email: str, ttl: timedelta | None = None) -> str:
    now = datetime.now(timezone.utc)
    exp_at = now + (ttl or timedelta(hours=ACCESS_TOKEN_TTL_HOURS))
    payload = {
        "sub": str(user_id),
        "email": email,
        "type": "access",
        "jti": str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int(exp_at.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    return payload


def _normalize_email(email: str) -> str:
    normalized = email.strip().lower()
    if not normalized or "@" not in normalized:
        raise HTTPException(status_code=422, detail="Invalid email")
    return normalized


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
) -> Identity:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing bearer token")

    payload = _decode_token(credentials.credentials)

    try:
        user_id = UUID(payload.get("sub"))
    except (TypeError, ValueError) as exc:
        raise HTTPException(
            status_code=401, detail="Invalid token subject") from exc

    return Identity(
        id=user_id,
        email=str(payload.get("email") or ""),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


def _token_response(user_row: dict) -> AuthTokenResponse:
    user = AuthUserResponse.model_validate(user_row)
    return AuthTokenResponse(
        access_token=issue_access_token(user.id, user.email),
        user=user,
    )


@router.post("/register", response_model=AuthTokenResponse, status_code=201)
async def register(
    payload: RegisterRequest,
    connection: AsyncConnection = Depends(get_db_connection),
) -> AuthTokenResponse:
    email = _normalize_email(payload.email)

    async with connection.cursor() as cursor:
        try:
            await cursor.execute(
                """
                INSERT INTO users (email, password_hash)
                VALUES (%s, crypt(%s, gen_salt('bf', 12)))
                RETURNING id, email, created_at
                """,
                (email, payload.password),
            )
        except UniqueViolation as exc:
            raise HTTPException(status_code=409, detail="An account with this email already exists") from exc

        user_row = await cursor.fetchone()

    logger.info("Registered user %s", user_row["id"])
    return _token_response(user_row)


@router.post("/login", response_model=AuthTokenResponse)
async def login(
    payload: CredentialsRequest,
    connection: AsyncConnection = Depends(get_db_connection),
    registry: SessionRegistry = Depends(get_session_registry),
) -> AuthTokenResponse:
    email = _normalize_email(payload.email)

    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT id, email, created_at
            FROM users
            WHERE LOWER(email) = LOWER(%s)
              AND password_hash = crypt(%s, password_hash)
            """,
            (email, payload.password),
        )
        user_row = await cursor.fetchone()

    if user_row is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    # A new sign-in starts a fresh chat session.
    await registry.deactivate(user_row["id"])
    return _token_response(user_row)


@router.get("/me", response_model=AuthUserResponse)
async def me(
    identity: Identity = Depends(get_current_identity),
    connection: AsyncConnection = Depends(get_db_connection),
) -> AuthUserResponse:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT id, email, created_at
            FROM users
            WHERE id = %s
            """,
            (identity.id,),
        )
        user_row = await cursor.fetchone()

    if user_row is None:
        raise HTTPException(status_code=404, detail="User not found")

    return AuthUserResponse.model_validate(user_row)


@router.post("/logout", status_code=204)
async def logout(
    identity: Identity = Depends(get_current_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> Response:
    # Identity becomes absent: the chat transcript and session are dropped.
    await registry.deactivate(identity.id)
    return Response(status_code=204)
