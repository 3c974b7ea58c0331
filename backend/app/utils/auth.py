"""Session token utilities: Supabase signing keys and legacy HS256 tokens."""
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from jose import jwt, jwk, JWTError

from app.config import get_settings

logger = logging.getLogger(__name__)


class SupabaseKeySet:
    """
    The project's JWKS, cached for ``ttl_seconds``.

    A token signed with a key id that is not in the cached set triggers one
    refetch, so a key rotation on the auth server does not sign every user
    out until the cache expires.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.ttl_seconds = settings.jwks_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._transport = transport
        self._keys: List[Dict[str, Any]] = []
        self._fetched_at: Optional[float] = None
        self.fetch_count = 0

    def _fresh(self) -> bool:
        return self._fetched_at is not None and (time.time() - self._fetched_at) < self.ttl_seconds

    async def _fetch(self) -> List[Dict[str, Any]]:
        settings = get_settings()
        if not settings.supabase_url:
            raise RuntimeError("SUPABASE_URL is not configured")

        jwks_url = f"{settings.supabase_url.rstrip('/')}/auth/v1/.well-known/jwks.json"
        async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
            response = await client.get(jwks_url)
            response.raise_for_status()
            self.fetch_count += 1
            return response.json().get("keys", [])

    async def keys(self, force_refresh: bool = False) -> List[Dict[str, Any]]:
        if force_refresh or not self._fresh():
            self._keys = await self._fetch()
            self._fetched_at = time.time()
        return self._keys

    async def key_for(self, kid: str) -> Dict[str, Any]:
        """Signing key for ``kid``, refetching once if the cached set lacks it."""
        refreshed = not self._fresh()
        for key in await self.keys():
            if key.get("kid") == kid:
                return key

        if not refreshed:
            logger.info(f"Signing key {kid} not cached; refetching JWKS")
            for key in await self.keys(force_refresh=True):
                if key.get("kid") == kid:
                    return key

        raise JWTError(f"No matching key found for kid: {kid}")

    def invalidate(self) -> None:
        self._keys = []
        self._fetched_at = None


supabase_keys = SupabaseKeySet()


async def verify_supabase_jwt(token: str, key_set: Optional[SupabaseKeySet] = None) -> Dict[str, Any]:
    """
    Verify a Supabase access token and return its claims.
    Raises JWTError on failure, including expiry.
    """
    settings = get_settings()
    kid = jwt.get_unverified_header(token).get("kid")
    if not kid:
        raise JWTError("Token header missing 'kid' claim")

    key_data = await (key_set or supabase_keys).key_for(kid)
    public_key = jwk.construct(key_data).to_pem().decode("utf-8")

    options = {"verify_aud": False} if not settings.supabase_jwt_audience else None

    return jwt.decode(
        token,
        public_key,
        algorithms=[key_data.get("alg", "RS256")],
        audience=settings.supabase_jwt_audience or None,
        options=options,
    )


def create_access_token(
    subject: str,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a legacy HS256 access token.

    Args:
        subject: User ID
        expires_delta: Optional custom lifetime (default 30 minutes)

    Returns:
        Encoded JWT token
    """
    settings = get_settings()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=30))

    to_encode = {
        "sub": str(subject),
        "exp": expire,
        "type": "access",
        "iat": datetime.utcnow(),
    }

    return jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.algorithm
    )


def verify_legacy_token(token: str) -> Optional[dict]:
    """
    Verify and decode a legacy HS256 access token.

    Returns:
        Decoded token payload or None if invalid or expired
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm]
        )
    except JWTError:
        return None

    if payload.get("type") != "access":
        return None

    return payload
