import logging
import time
from typing import Optional, Dict

import requests
from app.core.config import settings
from fastapi import HTTPException
from fastapi import Request
from jose import jwt, JWTError

logger = logging.getLogger(__name__)


class CurrentUser(Dict[str, str]):
    id: str
    email: Optional[str]
    full_name: Optional[str]


# Simple JWKS cache
_JWKS_CACHE: dict | None = None
_JWKS_TS: float | None = None
_JWKS_TTL = 3600.0  # seconds

# Supabase signs with asymmetric keys only
_ALLOWED_ALGORITHMS = ("RS256", "ES256")


def _get_jwks() -> dict:
    global _JWKS_CACHE, _JWKS_TS
    now = time.time()
    if _JWKS_CACHE and _JWKS_TS and (now - _JWKS_TS) < _JWKS_TTL:
        return _JWKS_CACHE
    jwks_url = settings.supabase_jwks_url
    if not jwks_url:
        raise HTTPException(status_code=500,
                            detail="Supabase JWKS URL not configured (SUPABASE_JWKS_URL or SUPABASE_PROJECT_URL)")
    try:
        resp = requests.get(jwks_url, timeout=5)
        resp.raise_for_status()
        _JWKS_CACHE = resp.json()
        _JWKS_TS = now
        return _JWKS_CACHE
    except requests.RequestException as e:
        raise HTTPException(status_code=503, detail=f"Failed to fetch JWKS: {e}")


def _verify_jwt(token: str) -> dict:
    # Get unverified header to find kid
    try:
        header = jwt.get_unverified_header(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token header")
    kid = header.get("kid")
    keys = _get_jwks().get("keys", [])
    key = next((k for k in keys if k.get("kid") == kid), None)
    if key is None:
        if not keys:
            raise HTTPException(status_code=401, detail="JWKS keys not available")
        key = keys[0]

    issuer = None
    if settings.supabase_project_url:
        issuer = settings.supabase_project_url.rstrip('/') + "/auth/v1"

    alg = key.get("alg") or "RS256"
    if alg not in _ALLOWED_ALGORITHMS:
        raise HTTPException(status_code=401, detail=f"Unsupported signing algorithm: {alg}")

    try:
        return jwt.decode(
            token,
            key,
            algorithms=[alg],
            issuer=issuer,
            options={"verify_aud": False},
        )
    except JWTError as e:
        raise HTTPException(status_code=401, detail=f"Token verification failed: {e}")


def _verify_or_decode_unverified(token: str) -> dict:
    """
    Verify against JWKS; when AUTH_ALLOW_UNVERIFIED is on (local development),
    fall back to decoding unverified claims.
    """
    try:
        return _verify_jwt(token)
    except HTTPException:
        if not settings.auth_allow_unverified:
            raise
        logger.warning("Accepting unverified token claims (AUTH_ALLOW_UNVERIFIED=1)")
        try:
            return jwt.get_unverified_claims(token)
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")


def get_current_user(request: Request) -> CurrentUser:
    """Validate the Supabase JWT from Authorization: Bearer <token>."""
    auth: Optional[str] = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    token = auth.split(" ", 1)[1].strip()

    payload = _verify_or_decode_unverified(token)

    user_id = payload.get("sub") or payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: user id not found")
    metadata = payload.get("user_metadata") or {}

    return CurrentUser(id=user_id, email=payload.get("email"), full_name=metadata.get("full_name"))  # type: ignore
