"""
OAuth credential storage and refresh for the CRM.

Credentials are stored per account id (the CRM location). A token whose expiry
is within the refresh buffer is refreshed before it is handed out. Refreshes
are single-flight per account: the provider rotates refresh tokens, so two
concurrent refreshes with the same refresh token would strand the second one.
A failed refresh never touches the stored row.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from models import OAuthToken
from utils.dates import ensure_utc, utc_now
from utils.exceptions import CredentialMissing, DatabaseError, RefreshFailed

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 86400


class TokenVault:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        token_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        refresh_buffer_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._http = http_client or httpx.AsyncClient(timeout=settings.crm_http_timeout_seconds)
        self._token_url = token_url or settings.crm_token_url
        self._client_id = client_id if client_id is not None else settings.crm_client_id
        self._client_secret = client_secret if client_secret is not None else settings.crm_client_secret
        self._redirect_uri = redirect_uri or settings.crm_redirect_uri
        buffer_seconds = (
            refresh_buffer_seconds if refresh_buffer_seconds is not None else settings.token_refresh_buffer_seconds
        )
        self._buffer = timedelta(seconds=buffer_seconds)
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        return self._locks.setdefault(account_id, asyncio.Lock())

    def _needs_refresh(self, token: OAuthToken) -> bool:
        return ensure_utc(token.expires_at) - self._clock() < self._buffer

    async def _load(self, account_id: str) -> Optional[OAuthToken]:
        async with self._session_factory() as session:
            result = await session.execute(select(OAuthToken).where(OAuthToken.account_id == account_id))
            return result.scalar_one_or_none()

    async def get_valid_token(self, account_id: str) -> str:
        """Access token for the account, refreshed first when it expires within the buffer."""
        token = await self._load(account_id)
        if token is None:
            raise CredentialMissing(f"No OAuth credential stored for account {account_id}")
        if not self._needs_refresh(token):
            return token.access_token

        async with self._lock_for(account_id):
            # Another caller may have refreshed while we waited.
            token = await self._load(account_id)
            if token is None:
                raise CredentialMissing(f"No OAuth credential stored for account {account_id}")
            if not self._needs_refresh(token):
                return token.access_token
            return await self._refresh_locked(account_id, token.refresh_token)

    async def refresh_token(self, account_id: str, refresh_token: str) -> str:
        """Exchange a refresh token and persist the result. Returns the new access token."""
        async with self._lock_for(account_id):
            token = await self._load(account_id)
            if token is None:
                raise CredentialMissing(f"No OAuth credential stored for account {account_id}")
            if token.refresh_token != refresh_token:
                # Already rotated by a concurrent refresh.
                if not self._needs_refresh(token):
                    return token.access_token
                refresh_token = token.refresh_token
            return await self._refresh_locked(account_id, refresh_token)

    async def _refresh_locked(self, account_id: str, refresh_token: str) -> str:
        payload = await self._post_token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            failure=RefreshFailed,
        )
        now = self._clock()
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(OAuthToken).where(OAuthToken.account_id == account_id))
                token = result.scalar_one_or_none()
                if token is None:
                    raise CredentialMissing(f"Credential for account {account_id} was removed during refresh")
                token.access_token = payload["access_token"]
                # Providers that do not rotate omit refresh_token; keep the old one.
                token.refresh_token = payload.get("refresh_token") or token.refresh_token
                token.expires_at = now + timedelta(seconds=int(payload.get("expires_in") or DEFAULT_EXPIRES_IN))
                token.updated_at = now
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to persist refreshed token for account %s", account_id, exc_info=True)
            raise DatabaseError("Failed to store refreshed OAuth token", original_error=e) from e
        logger.info("Refreshed OAuth token for account %s", account_id)
        return payload["access_token"]

    async def _post_token_request(self, grant: dict[str, str], failure: type) -> dict[str, Any]:
        data = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "redirect_uri": self._redirect_uri,
            **grant,
        }
        try:
            response = await self._http.post(
                self._token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning("Token endpoint unreachable: %s", e)
            raise failure(f"Token request failed: {e}", original_error=e) from e
        if response.status_code >= 400:
            logger.warning("Token endpoint returned %s for %s", response.status_code, grant["grant_type"])
            raise failure(f"Token request rejected: {response.status_code} {response.text}")
        try:
            payload = response.json()
        except ValueError as e:
            raise failure("Token endpoint returned a non-JSON body", original_error=e) from e
        if not payload.get("access_token"):
            raise failure("Token endpoint response has no access_token")
        return payload

    async def save_initial(self, account_id: str, access: str, refresh: str, expires_in: Optional[int]) -> None:
        """Upsert the credential for an account after the authorization-code exchange."""
        now = self._clock()
        expires_at = now + timedelta(seconds=int(expires_in or DEFAULT_EXPIRES_IN))
        async with self._lock_for(account_id):
            try:
                async with self._session_factory() as session:
                    result = await session.execute(select(OAuthToken).where(OAuthToken.account_id == account_id))
                    token = result.scalar_one_or_none()
                    if token is None:
                        session.add(
                            OAuthToken(
                                id=f"tok-{uuid.uuid4().hex[:12]}",
                                account_id=account_id,
                                access_token=access,
                                refresh_token=refresh,
                                expires_at=expires_at,
                                created_at=now,
                                updated_at=now,
                            )
                        )
                    else:
                        token.access_token = access
                        token.refresh_token = refresh
                        token.expires_at = expires_at
                        token.updated_at = now
                    await session.commit()
            except SQLAlchemyError as e:
                logger.error("Failed to store OAuth token for account %s", account_id, exc_info=True)
                raise DatabaseError("Failed to store OAuth token", original_error=e) from e
        logger.info("Stored OAuth credential for account %s", account_id)

    async def exchange_authorization_code(self, code: str) -> str:
        """Authorization-code grant from the OAuth callback. Returns the account id it was stored under."""
        payload = await self._post_token_request(
            {"grant_type": "authorization_code", "code": code},
            failure=RefreshFailed,
        )
        account_id = payload.get("locationId") or settings.crm_location_id
        if not account_id:
            raise RefreshFailed("Token response did not include a locationId")
        await self.save_initial(
            account_id,
            payload["access_token"],
            payload.get("refresh_token") or "",
            payload.get("expires_in"),
        )
        return account_id

    async def default_account_id(self) -> Optional[str]:
        """Configured location id, else the first stored credential's account."""
        if settings.crm_location_id:
            return settings.crm_location_id
        async with self._session_factory() as session:
            result = await session.execute(select(OAuthToken.account_id).order_by(OAuthToken.created_at).limit(1))
            return result.scalar_one_or_none()

    async def aclose(self) -> None:
        await self._http.aclose()
