"""Session providers: the single answer to "is this user signed in?"."""
import logging
from typing import Optional, Protocol

import httpx
from jose import JWTError

from app.config import get_settings
from app.utils.auth import verify_legacy_token, verify_supabase_jwt

logger = logging.getLogger(__name__)


class SessionProvider(Protocol):
    """What the guest workflow needs to know about authentication."""

    async def is_authenticated(self) -> bool:
        ...

    async def get_user_id(self) -> Optional[str]:
        ...

    async def get_access_token(self) -> Optional[str]:
        ...


class TokenSessionProvider:
    """
    Holds the access token handed over after sign-in.

    The token is verified on every call rather than trusted once, because
    sign-in can finish in an OAuth browser tab and tokens expire while the app
    stays open.
    """

    def __init__(self, access_token: Optional[str] = None):
        self._access_token = access_token
        self._refresh_token: Optional[str] = None

    def set_session(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        self._access_token = access_token
        self._refresh_token = refresh_token

    def clear(self) -> None:
        self._access_token = None
        self._refresh_token = None

    async def _claims(self) -> Optional[dict]:
        token = self._access_token
        if not token:
            return None

        settings = get_settings()
        if settings.supabase_url:
            try:
                return await verify_supabase_jwt(token)
            except JWTError as exc:
                logger.info(f"Session token rejected: {exc}")
                return None
            except (httpx.HTTPError, RuntimeError) as exc:
                logger.warning(f"Could not fetch signing keys, treating user as guest: {exc}")
                return None

        if settings.allow_legacy_jwt:
            return verify_legacy_token(token)

        return None

    async def is_authenticated(self) -> bool:
        claims = await self._claims()
        return bool(claims and claims.get("sub"))

    async def get_user_id(self) -> Optional[str]:
        claims = await self._claims()
        return claims.get("sub") if claims else None

    async def get_access_token(self) -> Optional[str]:
        if await self.is_authenticated():
            return self._access_token
        return None
