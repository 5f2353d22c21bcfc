"""
Marketplace service: FastAPI entry point

Request/response surface for accounts, the package catalog, orders and
order chat, plus the `/ws` realtime channel. Each request gets its own
`AsyncSession`; the Notification Hub is a single per-app instance handed to
the services through a dependency.
"""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, FastAPI, Request, Response, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import accounts, catalog, chat, orders, realtime, schema
from .config import Settings
from .errors import BadRequest, InvalidPackage, MarketplaceError, MissingField
from .hub import NotificationHub
from .identity import (
    SESSION_COOKIE,
    Actor,
    SessionStore,
    current_actor,
    optional_actor,
    session_token,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Dependencies ─────────────────────────────────


async def get_session(request: Request):
    async with request.app.state.session_factory() as session:
        yield session


def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# ── Request Models ───────────────────────────────


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=1)


class LoginRequest(BaseModel):
    email: str
    password: str


class PurchaseRequest(BaseModel):
    package_id: int


class MarkRequest(BaseModel):
    status: str = Field(min_length=1, max_length=64)


class PostMessageRequest(BaseModel):
    content: str


# ── Accounts ─────────────────────────────────────


@router.post("/api/register")
async def register(
    req: RegisterRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """Create a buyer account."""
    await accounts.create_user(session, req.email, req.password, timeout=settings.store_timeout)
    return {"ok": True}


@router.post("/api/login")
async def login(
    req: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    actor = await accounts.authenticate(session, req.email, req.password, timeout=settings.store_timeout)
    token = await request.app.state.sessions.create(actor)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_ttl,
        httponly=True,
        samesite="lax",
    )
    return {"ok": True, "user": actor.model_dump(), "token": token}


@router.post("/api/logout")
async def logout(request: Request, response: Response):
    token = session_token(request)
    if token:
        await request.app.state.sessions.destroy(token)
    response.delete_cookie(SESSION_COOKIE)
    return {"ok": True}


@router.get("/api/me")
async def me(actor: Actor | None = Depends(optional_actor)):
    return {"user": actor.model_dump() if actor else None}


# ── Catalog ──────────────────────────────────────


@router.get("/api/packages")
async def list_packages(session: AsyncSession = Depends(get_session)):
    return await catalog.list_packages(session)


# ── Orders ───────────────────────────────────────


@router.post("/api/purchase")
async def purchase(
    req: PurchaseRequest,
    actor: Actor = Depends(current_actor),
    session: AsyncSession = Depends(get_session),
    hub: NotificationHub = Depends(get_hub),
    settings: Settings = Depends(get_settings),
):
    order = await orders.purchase(session, hub, actor, req.package_id, settings.store_timeout)
    return {"ok": True, "orderId": order.id}


@router.get("/api/orders")
async def list_orders(
    actor: Actor = Depends(current_actor),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    return await orders.list_orders(session, actor, settings.store_timeout)


@router.post("/api/orders/{order_id}/mark")
async def mark_order(
    order_id: int,
    req: MarkRequest,
    actor: Actor = Depends(current_actor),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """Seller-only status overwrite."""
    await orders.set_status(session, actor, order_id, req.status, settings.store_timeout)
    return {"ok": True}


@router.get("/api/order-statuses")
async def order_statuses(settings: Settings = Depends(get_settings)):
    """Known status labels, for building UI pickers. Not enforced."""
    return {"statuses": list(settings.order_statuses)}


# ── Chat ─────────────────────────────────────────


@router.get("/api/messages/{order_id}")
async def list_messages(
    order_id: int,
    actor: Actor = Depends(current_actor),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    return await chat.list_messages(
        session,
        actor,
        order_id,
        settings.store_timeout,
        check_participant=settings.chat_participant_check,
    )


@router.post("/api/messages/{order_id}")
async def post_message(
    order_id: int,
    req: PostMessageRequest,
    actor: Actor = Depends(current_actor),
    session: AsyncSession = Depends(get_session),
    hub: NotificationHub = Depends(get_hub),
    settings: Settings = Depends(get_settings),
):
    await chat.post_message(
        session,
        hub,
        actor,
        order_id,
        req.content,
        settings.store_timeout,
        check_participant=settings.chat_participant_check,
    )
    return {"ok": True}


# ── Realtime ─────────────────────────────────────


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await realtime.serve(websocket)


@router.get("/health")
async def health():
    return {"status": "ok", "service": "marketplace"}


# ── Application ──────────────────────────────────


async def handle_marketplace_error(request: Request, exc: MarketplaceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code})


def request_error(errors: list[dict]) -> MarketplaceError:
    """
    Map FastAPI validation errors onto the error taxonomy.

    A package id that is missing or not an integer cannot resolve to a
    package, so it is reported as invalid_package.
    """
    if any("package_id" in e.get("loc", ()) for e in errors):
        return InvalidPackage()
    if any(e.get("type") == "missing" for e in errors):
        return MissingField()
    return BadRequest()


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = request_error(exc.errors())
    logger.info("Rejected %s %s: %s", request.method, request.url.path, error.code)
    return await handle_marketplace_error(request, error)


def create_app(settings: Settings | None = None, redis: aioredis.Redis | None = None) -> FastAPI:
    """
    Build the application.

    `redis` may be supplied by the caller (it is then left open on shutdown);
    otherwise a client is created from `settings.redis_url`.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        redis_pool = redis or aioredis.from_url(settings.redis_url, decode_responses=True)
        engine = create_async_engine(settings.database_url, echo=False)
        await schema.init_db(engine, seed=settings.seed_data)

        app.state.session_factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        app.state.sessions = SessionStore(redis_pool, settings.session_ttl)
        app.state.hub = NotificationHub(
            redis=redis_pool,
            channel=settings.events_channel,
            send_timeout=settings.publish_timeout,
        )
        logger.info("Marketplace service started on %s", engine.url.render_as_string(hide_password=True))
        yield
        await engine.dispose()
        if redis is None:
            await redis_pool.aclose()

    app = FastAPI(title="Marketplace Service", lifespan=lifespan)
    app.state.settings = settings
    app.add_exception_handler(MarketplaceError, handle_marketplace_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.include_router(router)
    return app


app = create_app()
