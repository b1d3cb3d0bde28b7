"""Account routes: registration, login and the current-user lookup.

Tokens issued here are the same bearer credentials the REST routes and the
websocket handshake verify, so a client can register and immediately open
its realtime channel with the returned token.
"""

import asyncio
import sqlite3

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from api.routes import Store
from auth import CurrentUser, get_token_verifier, hash_password, verify_password
from models.schemas import AuthResponse, CurrentUserResponse, LoginRequest, RegisterRequest
from rate_limiter import enforce_rate_limit

logger = structlog.get_logger(__name__)

auth_router = APIRouter(prefix="/api/auth", dependencies=[Depends(enforce_rate_limit)])


@auth_router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
)
async def register(body: RegisterRequest, request: Request, store: Store) -> AuthResponse:
    """Create an account and return a bearer token for it.

    Raises:
        HTTPException: 400 if the email is already registered.
    """
    if await store.get_user_by_email(body.email) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

    password_hash = await asyncio.to_thread(hash_password, body.password)
    try:
        user = await store.create_user(body.name, body.email, password_hash=password_hash)
    except sqlite3.IntegrityError as e:
        # Lost a race with a concurrent registration for the same email.
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists"
        ) from e

    token = get_token_verifier(request).issue(user.id)
    logger.info("user_registered", user_id=user.id)
    return AuthResponse(message="User created successfully", token=token, user=user)


@auth_router.post("/login", response_model=AuthResponse, summary="Log in")
async def login(body: LoginRequest, request: Request, store: Store) -> AuthResponse:
    """Exchange email and password for a bearer token.

    Unknown emails and wrong passwords produce the same 401.
    """
    credentials = await store.get_credentials(body.email)
    if credentials is not None:
        user, password_hash = credentials
        if await asyncio.to_thread(verify_password, password_hash, body.password):
            token = get_token_verifier(request).issue(user.id)
            logger.info("user_logged_in", user_id=user.id)
            return AuthResponse(message="Login successful", token=token, user=user)

    logger.info("login_failed")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


@auth_router.get("/me", response_model=CurrentUserResponse, summary="Get the current user")
async def me(user: CurrentUser) -> CurrentUserResponse:
    return CurrentUserResponse(user=user)
