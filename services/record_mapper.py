"""
Pushes saved application data to the CRM: lead creation, per-step tags and
opportunity fields, completion, abandonment and verification emails.

sync_step is best-effort: CRM and auth failures come back as a warning string,
never as an exception, because the durable write it follows already succeeded.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from config import settings
from services.crm_client import CRMClient
from services.crm_fields import (
    STAGE_NEW_LEAD,
    STAGE_SUBMITTED,
    abandoned_tag,
    custom_fields_payload,
    map_step_to_external_fields,
    parse_amount,
    step_tags,
)
from services.pipeline_stages import PipelineStageCache
from utils.dates import iso_date
from utils.exceptions import AppError

logger = logging.getLogger(__name__)

SYNC_WARNING = "Saved, but syncing to the CRM is pending"


@dataclass
class LeadResult:
    contact_id: str
    opportunity_id: Optional[str]
    is_existing: bool
    existing_data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "opportunity_id": self.opportunity_id,
            "is_existing": self.is_existing,
            "existing_data": self.existing_data,
        }


def _contact_payload(step1: dict[str, Any]) -> dict[str, Any]:
    payload = {
        "firstName": step1.get("first_name"),
        "lastName": step1.get("last_name"),
        "email": step1.get("email"),
        "phone": step1.get("mobile"),
        "dateOfBirth": iso_date(step1.get("date_of_birth")),
    }
    return {k: v for k, v in payload.items() if v}


class ExternalRecordMapper:
    def __init__(self, crm: CRMClient, stage_cache: Optional[PipelineStageCache] = None):
        self.crm = crm
        self.stages = stage_cache or PipelineStageCache(
            crm, settings.crm_pipeline_id, settings.crm_pipeline_cache_ttl_seconds
        )

    async def create_lead(self, step1: dict[str, Any]) -> LeadResult:
        """Find the contact by email (update it) or create one, then open a New Lead opportunity."""
        existing = await self.crm.search_contact_by_email(step1["email"])
        contact = _contact_payload(step1)
        contact["tags"] = step_tags(1, step1)[0]
        existing_data = None
        if existing:
            contact_id = existing["id"]
            existing_data = {
                "first_name": existing.get("firstName") or step1.get("first_name"),
                "last_name": existing.get("lastName") or step1.get("last_name"),
                "email": existing.get("email") or step1.get("email"),
                "mobile": existing.get("phone") or step1.get("mobile"),
                "date_of_birth": existing.get("dateOfBirth"),
            }
            contact.pop("email", None)
            await self.crm.update_contact(contact_id, contact)
            logger.info("Updated existing CRM contact %s", contact_id)
        else:
            created = await self.crm.create_contact(contact)
            contact_id = created["id"]
            logger.info("Created CRM contact %s", contact_id)

        opportunity_id = None
        stage_id = await self.stages.get_stage_id(STAGE_NEW_LEAD)
        if stage_id:
            name = " ".join(p for p in (step1.get("first_name"), step1.get("last_name")) if p)
            opportunity = await self.crm.create_opportunity(
                {
                    "name": f"AIP Application - {name}".strip(),
                    "pipelineId": self.stages.pipeline_id,
                    "pipelineStageId": stage_id,
                    "status": "open",
                    "contactId": contact_id,
                }
            )
            opportunity_id = opportunity.get("id")
        else:
            logger.warning("Stage %r not found; lead created without an opportunity", STAGE_NEW_LEAD)
        return LeadResult(contact_id, opportunity_id, existing is not None, existing_data)

    async def sync_step(
        self,
        external_contact_id: Optional[str],
        step_number: int,
        data: dict[str, Any],
        opportunity_id: Optional[str] = None,
    ) -> Optional[str]:
        """Best-effort push of one saved step. Returns a warning on failure, else None."""
        if not external_contact_id:
            logger.info("Step %s not synced: application has no CRM contact", step_number)
            return f"{SYNC_WARNING}: no CRM contact is linked to this application"
        try:
            if step_number == 6:
                await self.complete_application(external_contact_id, opportunity_id, data)
            else:
                await self._push_step(external_contact_id, step_number, data, opportunity_id)
        except AppError as e:
            logger.warning("CRM sync for step %s failed: %s", step_number, e)
            return f"{SYNC_WARNING}: {e}"
        return None

    async def _push_step(
        self, contact_id: str, step_number: int, data: dict[str, Any], opportunity_id: Optional[str]
    ) -> None:
        add, remove = step_tags(step_number, data)
        if add:
            await self.crm.add_tags(contact_id, add)
        if remove:
            await self.crm.remove_tags(contact_id, remove)
        if opportunity_id:
            fields = map_step_to_external_fields(data)
            if fields:
                await self.crm.update_opportunity(opportunity_id, {"customFields": custom_fields_payload(fields)})

    async def complete_application(
        self, contact_id: str, opportunity_id: Optional[str], data: dict[str, Any]
    ) -> None:
        """Completion tags, then move the opportunity to the submitted stage valued at the deposit."""
        add, remove = step_tags(6, data)
        await self.crm.remove_tags(contact_id, remove)
        await self.crm.add_tags(contact_id, add)
        if not opportunity_id:
            return
        update: dict[str, Any] = {}
        stage_id = await self.stages.get_stage_id(STAGE_SUBMITTED)
        if stage_id:
            update["pipelineStageId"] = stage_id
        deposit = parse_amount(data.get("deposit_available"))
        if deposit is not None:
            update["monetaryValue"] = deposit
        fields = map_step_to_external_fields(data)
        if fields:
            update["customFields"] = custom_fields_payload(fields)
        if update:
            await self.crm.update_opportunity(opportunity_id, update)
            logger.info("Opportunity %s moved to %r", opportunity_id, STAGE_SUBMITTED)

    async def mark_abandoned(self, contact_id: str, step_number: int) -> None:
        await self.crm.add_tags(contact_id, [abandoned_tag(step_number)])

    async def find_contact_id(self, email: str) -> Optional[str]:
        contact = await self.crm.search_contact_by_email(email)
        return contact["id"] if contact else None

    async def send_verification_code(self, contact_id: str, code: str, ttl_minutes: int) -> None:
        text = (
            f"Your verification code is {code}.\n\n"
            f"It expires in {ttl_minutes} minutes. If you did not ask to continue an application, ignore this email."
        )
        html = (
            "<p>Use this code to continue your mortgage application:</p>"
            f"<p style=\"font-size:24px;letter-spacing:4px\"><strong>{code}</strong></p>"
            f"<p>The code expires in {ttl_minutes} minutes. "
            "If you did not ask to continue an application, ignore this email.</p>"
        )
        await self.crm.send_email(contact_id, "Your application verification code", html, text)
