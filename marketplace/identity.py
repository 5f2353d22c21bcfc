"""
Marketplace service: identity context

Resolves an incoming request or websocket to the acting user. Sessions live
in Redis under `session:<token>` with a TTL; the token is looked up in an
`Authorization: Bearer` header first, then the `session` cookie, then a
`token` query parameter (for websocket clients).
"""

import logging
import secrets

import redis.asyncio as aioredis
from fastapi import Depends, Request
from pydantic import BaseModel, ValidationError
from starlette.requests import HTTPConnection

from .errors import Unauthenticated

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"

BUYER = "buyer"
SELLER = "seller"


class Actor(BaseModel):
    id: int
    email: str
    role: str

    @property
    def is_seller(self) -> bool:
        return self.role == SELLER


class SessionStore:
    def __init__(self, redis: aioredis.Redis, ttl: int):
        self.redis = redis
        self.ttl = ttl

    @staticmethod
    def _key(token: str) -> str:
        return f"session:{token}"

    async def create(self, actor: Actor) -> str:
        token = secrets.token_urlsafe(32)
        await self.redis.set(self._key(token), actor.model_dump_json(), ex=self.ttl)
        return token

    async def get(self, token: str) -> Actor | None:
        raw = await self.redis.get(self._key(token))
        if raw is None:
            return None
        try:
            return Actor.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed session payload")
            await self.redis.delete(self._key(token))
            return None

    async def destroy(self, token: str) -> None:
        await self.redis.delete(self._key(token))


def session_token(conn: HTTPConnection) -> str | None:
    auth = conn.headers.get("authorization", "")
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return conn.cookies.get(SESSION_COOKIE) or conn.query_params.get("token") or None


async def resolve_actor(conn: HTTPConnection) -> Actor | None:
    """The logged-in user behind `conn`, or None when anonymous."""
    token = session_token(conn)
    if token is None:
        return None
    sessions: SessionStore = conn.app.state.sessions
    return await sessions.get(token)


async def optional_actor(request: Request) -> Actor | None:
    return await resolve_actor(request)


async def current_actor(actor: Actor | None = Depends(optional_actor)) -> Actor:
    if actor is None:
        raise Unauthenticated()
    return actor
