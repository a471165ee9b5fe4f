from __future__ import annotations
from typing import Any, Dict, AsyncGenerator
from fastapi import Header
import logging
import time
import uuid
import httpx
import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .core.config import get_settings
from .core.errors import Unauthorized

settings = get_settings()
logger = logging.getLogger(__name__)

_JWKS: Dict[str, Any] | None = None
_JWKS_TS: float = 0.0
_JWKS_TTL: int = 3600

async def fetch_jwks() -> Dict[str, Any]:
    global _JWKS, _JWKS_TS
    now = time.time()
    if _JWKS is None or (now - _JWKS_TS) > _JWKS_TTL:
        async with httpx.AsyncClient() as client:
            r = await client.get(settings.auth_jwks_url, timeout=5.0)
            r.raise_for_status()
            _JWKS = r.json()
            _JWKS_TS = now
    return _JWKS

async def get_signing_key(kid: str | None = None):
    from jwt.algorithms import RSAAlgorithm
    jwks = await fetch_jwks()
    keys = jwks.get("keys", [])
    if not keys:
        raise Unauthorized("No signing keys available")
    key = next((k for k in keys if kid and k.get("kid") == kid), keys[0])
    return RSAAlgorithm.from_jwk(key)

async def get_claims(authorization: str | None = Header(default=None)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized()
    token = authorization.split(" ", 1)[1].strip()
    try:
        kid = jwt.get_unverified_header(token).get("kid")
        key = await get_signing_key(kid)
        payload = jwt.decode(token, key=key, algorithms=["RS256"], options={"verify_aud": False})
    except jwt.PyJWTError as e:
        logger.info("rejected caller token: %s", e)
        raise Unauthorized()
    if "sub" not in payload or "role" not in payload:
        raise Unauthorized("Invalid token payload")
    try:
        uuid.UUID(str(payload["sub"]))
    except ValueError:
        raise Unauthorized("Invalid token subject")
    payload["role"] = str(payload["role"]).lower()
    return payload

def caller_id(claims: Dict[str, Any]) -> uuid.UUID:
    return uuid.UUID(str(claims["sub"]))

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for s in get_session():
        yield s
