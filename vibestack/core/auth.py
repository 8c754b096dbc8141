import os
import logging
from typing import Optional, Dict, Any

from fastapi import Depends, Header, HTTPException
from jwt import (
    decode as jwt_decode,
    PyJWKClient,
    InvalidTokenError,
    get_unverified_header,
)

from vibestack.data import users

log = logging.getLogger(__name__)

# --- Supabase JWT verification (RS256 via JWKS, HS256 via shared secret) ---
SUPABASE_JWKS_URL = os.environ.get("SUPABASE_JWT_JWKS_URL")
SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET")
SUPABASE_ISS = os.environ.get("SUPABASE_ISS") or os.environ.get("SUPABASE_JWT_ISSUER")
if not (SUPABASE_JWKS_URL or SUPABASE_JWT_SECRET):
    log.warning(
        "SUPABASE_JWT_JWKS_URL/SUPABASE_JWT_SECRET not set; authenticated routes will return 401 until configured."
    )
_JWK_CLIENT: Optional[PyJWKClient] = (
    PyJWKClient(SUPABASE_JWKS_URL) if SUPABASE_JWKS_URL else None
)


def verify_bearer_token(authorization: Optional[str]) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise InvalidTokenError("Missing bearer token")
    token = authorization.split(" ", 1)[1]
    try:
        header = get_unverified_header(token)
    except Exception as e:
        raise InvalidTokenError("Invalid JWT header") from e

    alg = header.get("alg")

    if alg == "RS256":
        if not _JWK_CLIENT:
            raise InvalidTokenError("JWKS client not configured")
        signing_key = _JWK_CLIENT.get_signing_key_from_jwt(token).key
        claims = jwt_decode(
            token, signing_key, algorithms=["RS256"], options={"verify_aud": False}
        )
    elif alg == "HS256":
        if not SUPABASE_JWT_SECRET:
            raise InvalidTokenError("HS256 token but SUPABASE_JWT_SECRET not set")
        claims = jwt_decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
    else:
        raise InvalidTokenError(f"Unsupported alg: {alg}")

    if SUPABASE_ISS and claims.get("iss") != SUPABASE_ISS:
        raise InvalidTokenError("Invalid issuer")
    return claims


def _identity(claims: Dict[str, Any]) -> Dict[str, Any]:
    meta = claims.get("user_metadata") or {}
    return {
        "user_id": claims.get("sub"),
        "email": claims.get("email"),
        "username": claims.get("preferred_username") or meta.get("username"),
        "first_name": claims.get("given_name") or meta.get("first_name"),
    }


def get_current_user(authorization: Optional[str] = Header(None)):
    """Return the verified identity from a bearer JWT or 401."""
    try:
        claims = verify_bearer_token(authorization)
    except Exception:
        # Expired/invalid/missing/JWKS issues are all Unauthorized
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return _identity(claims)


def get_optional_user(authorization: Optional[str] = Header(None)):
    """Identity for public pages: None for anonymous or unverifiable callers."""
    if not authorization:
        return None
    try:
        claims = verify_bearer_token(authorization)
    except Exception:
        return None
    return _identity(claims) if claims.get("sub") else None


def get_current_profile(user: dict = Depends(get_current_user)) -> dict:
    """Verified caller plus their users row, created on first sight."""
    row = users.ensure_user_row(
        user["user_id"],
        user.get("email"),
        users.build_handle(user["user_id"], user.get("username"), user.get("first_name")),
    )
    if row is None:
        raise HTTPException(status_code=409, detail={"reason": "user_row_unavailable"})
    return row
