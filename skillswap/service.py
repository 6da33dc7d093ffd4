"""HTTP API and push endpoint for the SkillSwap directory."""

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
from contextlib import suppress
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from starlette.websockets import WebSocketDisconnect, WebSocketState

from .config import MAX_PAGE_SIZE, Settings, load_settings
from .database import MIN_PASSWORD_LENGTH, Database
from .errors import SwapRequestError
from .models import Availability, RequestId, SwapRequest, User, UserId, UserSummary
from .notifications import NotificationDispatcher
from .security import BearerAuth, TokenIssuer
from .swaps import RequestService

logger = logging.getLogger("skillswap.service")


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=256)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be empty")
        return stripped

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        stripped = value.strip().lower()
        local, _, domain = stripped.partition("@")
        if not local or not domain or " " in stripped:
            raise ValueError("email must be a valid address")
        return stripped


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=256)


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    location: Optional[str] = Field(default=None, max_length=200)
    skills_offered: Optional[List[str]] = Field(default=None, max_length=50)
    skills_wanted: Optional[List[str]] = Field(default=None, max_length=50)
    availability: Optional[Availability] = None
    is_public: Optional[bool] = None
    profile_photo: Optional[str] = Field(default=None, max_length=2048)


class PublicUserResponse(BaseModel):
    id: str
    name: str
    location: str
    skills_offered: List[str]
    skills_wanted: List[str]
    availability: Availability
    is_public: bool
    profile_photo: str
    created_at: datetime


class UserResponse(PublicUserResponse):
    email: str
    updated_at: datetime


class AuthResponse(BaseModel):
    token: str
    user: UserResponse


class UserPageResponse(BaseModel):
    users: List[PublicUserResponse]
    current_page: int
    total_pages: int
    total_users: int


class SwapRequestCreate(BaseModel):
    to_user: str = Field(..., min_length=1, max_length=64)
    skill_offered: str = Field(..., min_length=1, max_length=100)
    skill_wanted: str = Field(..., min_length=1, max_length=100)
    message: str = Field(default="", max_length=1000)


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., min_length=1, max_length=32)


class UserSummaryResponse(BaseModel):
    id: str
    name: str
    profile_photo: str


class SwapRequestResponse(BaseModel):
    id: str
    from_user: UserSummaryResponse
    to_user: UserSummaryResponse
    skill_offered: str
    skill_wanted: str
    message: str
    status: str
    created_at: datetime
    updated_at: datetime


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        location=user.location,
        skills_offered=list(user.skills_offered),
        skills_wanted=list(user.skills_wanted),
        availability=user.availability,
        is_public=user.is_public,
        profile_photo=user.profile_photo,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def user_to_public_response(user: User) -> PublicUserResponse:
    return PublicUserResponse(
        id=user.id,
        name=user.name,
        location=user.location,
        skills_offered=list(user.skills_offered),
        skills_wanted=list(user.skills_wanted),
        availability=user.availability,
        is_public=user.is_public,
        profile_photo=user.profile_photo,
        created_at=user.created_at,
    )


def _summary_to_response(summary: UserSummary) -> UserSummaryResponse:
    return UserSummaryResponse(id=summary.id, name=summary.name, profile_photo=summary.profile_photo)


def request_to_response(request: SwapRequest) -> SwapRequestResponse:
    return SwapRequestResponse(
        id=request.id,
        from_user=_summary_to_response(request.from_user),
        to_user=_summary_to_response(request.to_user),
        skill_offered=request.skill_offered,
        skill_wanted=request.skill_wanted,
        message=request.message,
        status=request.status.value,
        created_at=request.created_at,
        updated_at=request.updated_at,
    )


async def send_websocket_json(websocket: WebSocket, payload: Dict[str, Any]) -> None:
    """Safely send a JSON payload to a websocket client."""

    if websocket.client_state == WebSocketState.DISCONNECTED:
        return
    with suppress(Exception):
        await websocket.send_json(payload)


def _extract_websocket_token(websocket: WebSocket) -> Optional[str]:
    header = websocket.headers.get("authorization")
    if header:
        parts = header.strip().split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1].strip():
            return parts[1].strip()
        return None
    token = websocket.query_params.get("token", "").strip()
    return token or None


def register_api_routes(
    app: FastAPI,
    *,
    database: Database,
    request_service: RequestService,
    dispatcher: NotificationDispatcher,
    issuer: TokenIssuer,
    auth: BearerAuth,
    settings: Settings,
) -> None:
    """Expose the JSON API and the notification websocket on ``app``."""

    async def get_current_user(request: Request) -> User:
        return await auth(request)

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/auth/register", status_code=status.HTTP_201_CREATED, response_model=AuthResponse)
    async def register(payload: RegisterRequest) -> AuthResponse:
        try:
            user = database.create_user(payload.name, payload.email, payload.password)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        logger.info("Registered user %s", user.id)
        return AuthResponse(token=issuer.issue(user.id), user=user_to_response(user))

    @app.post("/auth/login", response_model=AuthResponse)
    async def login(payload: LoginRequest) -> AuthResponse:
        user = database.authenticate_user(payload.email, payload.password)
        if user is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid credentials")
        return AuthResponse(token=issuer.issue(user.id), user=user_to_response(user))

    @app.get("/users/me", response_model=UserResponse)
    async def read_current_user(user: User = Depends(get_current_user)) -> UserResponse:
        return user_to_response(user)

    @app.put("/users/profile", response_model=UserResponse)
    async def update_profile(
        payload: ProfileUpdateRequest,
        user: User = Depends(get_current_user),
    ) -> UserResponse:
        changes = payload.model_dump(exclude_unset=True)
        try:
            updated = database.update_user_profile(user.id, **changes)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return user_to_response(updated)

    @app.get("/users/public", response_model=UserPageResponse)
    async def list_public_users(
        page: int = Query(default=1, ge=1),
        limit: Optional[int] = Query(default=None, ge=1, le=MAX_PAGE_SIZE),
        search: str = Query(default="", max_length=100),
    ) -> UserPageResponse:
        result = database.list_public_users(
            page=page,
            limit=limit or settings.default_page_size,
            search=search,
        )
        return UserPageResponse(
            users=[user_to_public_response(user) for user in result.users],
            current_page=result.page,
            total_pages=result.total_pages,
            total_users=result.total_users,
        )

    @app.get("/users/{user_id}", response_model=PublicUserResponse)
    async def read_user(user_id: str) -> PublicUserResponse:
        user = database.get_user(UserId(user_id))
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user_to_public_response(user)

    @app.post("/requests", status_code=status.HTTP_201_CREATED, response_model=SwapRequestResponse)
    async def create_request(
        payload: SwapRequestCreate,
        user: User = Depends(get_current_user),
    ) -> SwapRequestResponse:
        created = await request_service.submit_request(
            user.id,
            UserId(payload.to_user.strip()),
            payload.skill_offered,
            payload.skill_wanted,
            payload.message,
        )
        return request_to_response(created)

    @app.get("/requests", response_model=List[SwapRequestResponse])
    async def list_requests(user: User = Depends(get_current_user)) -> List[SwapRequestResponse]:
        records = await request_service.list_for_user(user.id)
        return [request_to_response(record) for record in records]

    @app.put("/requests/{request_id}/status", response_model=SwapRequestResponse)
    async def update_request_status(
        request_id: str,
        payload: StatusUpdateRequest,
        user: User = Depends(get_current_user),
    ) -> SwapRequestResponse:
        updated = await request_service.respond_to_request(
            user.id,
            RequestId(request_id),
            payload.status.strip(),
        )
        return request_to_response(updated)

    @app.websocket("/ws")
    async def notifications_socket(websocket: WebSocket) -> None:
        token = _extract_websocket_token(websocket)
        if token is None:
            await websocket.close(code=4401)
            return
        user = auth.resolve(token)
        if user is None:
            await websocket.close(code=4403)
            return

        await websocket.accept()
        # Greet before registering so no pushed event can overtake it.
        await send_websocket_json(websocket, {"event": "connected", "data": {"user_id": user.id}})
        async with dispatcher.connect(user.id, websocket):
            logger.info("User %s opened a notification channel", user.id)
            try:
                while True:
                    message = await websocket.receive()
                    if message["type"] == "websocket.disconnect":
                        break
                    text = message.get("text")
                    if not text:
                        continue
                    try:
                        payload = json.loads(text)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(payload, dict) and payload.get("type") == "ping":
                        if not await dispatcher.reply(user.id, websocket, "pong", {}):
                            break
            except WebSocketDisconnect:
                pass
            finally:
                logger.info("User %s closed a notification channel", user.id)


def _resolve_token_secret(settings: Settings) -> str:
    if settings.token_secret:
        return settings.token_secret
    logger.warning(
        "SKILLSWAP_TOKEN_SECRET is not set; using a temporary secret. Issued tokens"
        " will stop working when the process restarts."
    )
    return secrets.token_urlsafe(32)


def create_app(
    *,
    database: Database | None = None,
    settings: Settings | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the SkillSwap directory."""

    app_settings = settings or load_settings()
    db = database or Database(app_settings.database_path)
    db.initialize()

    app_dispatcher = dispatcher or NotificationDispatcher()
    issuer = TokenIssuer(_resolve_token_secret(app_settings), ttl_seconds=app_settings.token_ttl_seconds)
    auth = BearerAuth(db, issuer)
    request_service = RequestService(db, app_dispatcher)

    app = FastAPI(
        title="SkillSwap API",
        version="1.0.0",
        description="Peer skill-exchange directory with swap requests and live notifications.",
        debug=app_settings.debug,
    )
    if app_settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(app_settings.cors_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.settings = app_settings
    app.state.database = db
    app.state.dispatcher = app_dispatcher
    app.state.token_issuer = issuer
    app.state.request_service = request_service

    register_api_routes(
        app,
        database=db,
        request_service=request_service,
        dispatcher=app_dispatcher,
        issuer=issuer,
        auth=auth,
        settings=app_settings,
    )

    @app.exception_handler(SwapRequestError)
    async def handle_swap_request_error(_: Request, exc: SwapRequestError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(sqlite3.DatabaseError)
    async def handle_database_error(request: Request, exc: sqlite3.DatabaseError):
        logger.error("Database failure while handling %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Server error"},
        )

    return app


__all__ = ["create_app", "register_api_routes", "request_to_response", "user_to_response"]
