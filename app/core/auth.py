"""Authentication dependencies resolving the watchlist owner from a Supabase JWT."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings

logger = logging.getLogger(__name__)

# Anonymous callers are allowed through; the watchlist decides what they may do.
security = HTTPBearer(auto_error=False)


def decode_token(token: str) -> Mapping[str, Any]:
    """Verify a Supabase JWT and return its claims."""
    settings = get_settings()

    try:
        header = jwt.get_unverified_header(token)
        alg = header.get("alg")

        if alg in ["RS256", "ES256"]:
            if not settings.supabase_url:
                logger.error("SUPABASE_URL is missing in environment variables. Cannot fetch JWKS for %s.", alg)
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail="Server configuration error: SUPABASE_URL missing for asymmetric JWT",
                )

            # Signing keys are published through the project's JWKS endpoint.
            jwks_url = f"{settings.supabase_url.rstrip('/')}/auth/v1/jwks"
            logger.info("Fetching JWKS from %s", jwks_url)
            jwks_client = jwt.PyJWKClient(jwks_url)
            signing_key = jwks_client.get_signing_key_from_jwt(token)
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256", "ES256"],
                options={"verify_aud": False},
            )

        if not settings.supabase_jwt_secret:
            raise jwt.InvalidKeyError("SUPABASE_JWT_SECRET is required for HS256 tokens")
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )

    except jwt.ExpiredSignatureError as exc:
        logger.warning("JWT validation failed: Token expired. Detail: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    except jwt.PyJWTError as exc:
        logger.warning("JWT validation failed: Invalid token. Reason: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication credentials: {exc}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def get_current_owner(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str | None:
    """Return the caller's stable user id, or ``None`` for anonymous requests."""

    if credentials is None:
        return None

    settings = get_settings()
    if not settings.supabase_jwt_secret and not settings.supabase_url:
        # Fallback for dev environments if secret is missing
        logger.warning("SUPABASE_JWT_SECRET not configured. Using %s for dev.", settings.dev_owner)
        return settings.dev_owner

    claims = decode_token(credentials.credentials)
    subject = claims.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return str(subject)
