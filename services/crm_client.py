"""
Thin async client for the LeadConnector CRM API (contacts, opportunities,
pipelines, custom objects, conversations). Auth comes from the TokenVault.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from config import settings
from services.token_vault import TokenVault
from utils.exceptions import CredentialMissing, ExternalApiError

logger = logging.getLogger(__name__)

LEAD_SOURCE = "AIP Fact Find Form"


class CRMClient:
    def __init__(
        self,
        vault: TokenVault,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        messages_api_version: Optional[str] = None,
        account_id: Optional[str] = None,
    ):
        self.vault = vault
        self._http = http_client or httpx.AsyncClient(timeout=settings.crm_http_timeout_seconds)
        self._base_url = (base_url or settings.crm_base_url).rstrip("/")
        self._api_version = api_version or settings.crm_api_version
        self._messages_api_version = messages_api_version or settings.crm_messages_api_version
        self._account_id = account_id

    async def account_id(self) -> str:
        account_id = self._account_id or await self.vault.default_account_id()
        if not account_id:
            raise CredentialMissing("No CRM account connected; complete the OAuth setup first")
        return account_id

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        version: Optional[str] = None,
    ) -> dict[str, Any]:
        token = await self.vault.get_valid_token(await self.account_id())
        headers = {
            "Authorization": f"Bearer {token}",
            "Version": version or self._api_version,
            "Accept": "application/json",
        }
        url = f"{self._base_url}{path}"
        try:
            response = await self._http.request(method, url, json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("CRM %s %s failed: %s", method, path, e)
            raise ExternalApiError(f"CRM request failed: {e}", original_error=e) from e
        if response.status_code >= 400:
            logger.warning("CRM %s %s returned %s", method, path, response.status_code)
            raise ExternalApiError(
                f"CRM API error: {response.status_code} {response.reason_phrase} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    # Contacts

    async def search_contact_by_email(self, email: str) -> Optional[dict[str, Any]]:
        body = {
            "locationId": await self.account_id(),
            "pageLimit": 1,
            "filters": [{"field": "email", "operator": "eq", "value": email}],
        }
        data = await self._request("POST", "/contacts/search", json=body)
        contacts = data.get("contacts") or []
        return contacts[0] if contacts else None

    async def create_contact(self, contact: dict[str, Any]) -> dict[str, Any]:
        body = {"locationId": await self.account_id(), "source": LEAD_SOURCE, **contact}
        data = await self._request("POST", "/contacts/", json=body)
        return data.get("contact") or data

    async def update_contact(self, contact_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        data = await self._request("PUT", f"/contacts/{contact_id}", json=fields)
        return data.get("contact") or data

    async def add_tags(self, contact_id: str, tags: list[str]) -> None:
        await self._request("POST", f"/contacts/{contact_id}/tags", json={"tags": tags})

    async def remove_tags(self, contact_id: str, tags: list[str]) -> None:
        await self._request("DELETE", f"/contacts/{contact_id}/tags", json={"tags": tags})

    # Opportunities

    async def create_opportunity(self, opportunity: dict[str, Any]) -> dict[str, Any]:
        body = {"locationId": await self.account_id(), "source": LEAD_SOURCE, **opportunity}
        data = await self._request("POST", "/opportunities/", json=body)
        return data.get("opportunity") or data

    async def update_opportunity(self, opportunity_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        data = await self._request("PUT", f"/opportunities/{opportunity_id}", json=fields)
        return data.get("opportunity") or data

    async def get_pipelines(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/opportunities/pipelines", params={"locationId": await self.account_id()})
        return data.get("pipelines") or []

    # Custom objects

    async def create_custom_object_record(
        self, object_key: str, owner_contact_id: str, properties: dict[str, Any]
    ) -> dict[str, Any]:
        body = {
            "locationId": await self.account_id(),
            "owner": [owner_contact_id],
            "followers": [owner_contact_id],
            "properties": properties,
        }
        data = await self._request("POST", f"/objects/{object_key}/records", json=body)
        return data.get("record") or data

    # Conversations

    async def send_email(self, contact_id: str, subject: str, html: str, text: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": "Email",
            "contactId": contact_id,
            "subject": subject,
            "html": html,
            "message": text,
        }
        if settings.crm_email_from:
            body["emailFrom"] = settings.crm_email_from
        return await self._request(
            "POST", "/conversations/messages", json=body, version=self._messages_api_version
        )

    async def aclose(self) -> None:
        await self._http.aclose()
