from typing import Optional

from fastapi import APIRouter, Depends

from api.deps import get_crm_client, get_record_mapper, get_state_store
from schemas.crm import AbandonRequest, CoApplicantRecordsRequest
from services.application_state import ApplicationStateStore
from services.co_applicant_records import CoApplicantRecordCreator
from services.crm_client import CRMClient
from services.record_mapper import ExternalRecordMapper
from utils.case import dict_keys_to_camel
from utils.exceptions import ValidationError

router = APIRouter(prefix="/api/crm", tags=["crm"])


@router.post("/applications/{application_id}/lead")
async def create_lead(application_id: str, store: ApplicationStateStore = Depends(get_state_store)):
    """Create or update the CRM contact and New Lead opportunity from the saved step 1."""
    return dict_keys_to_camel(await store.create_lead(application_id))


@router.post("/applications/{application_id}/complete")
async def complete_application(application_id: str, store: ApplicationStateStore = Depends(get_state_store)):
    await store.complete_in_crm(application_id)
    return {"success": True, "message": "Opportunity updated successfully"}


@router.post("/applications/{application_id}/co-applicant-records")
async def create_co_applicant_records(
    application_id: str,
    body: Optional[CoApplicantRecordsRequest] = None,
    store: ApplicationStateStore = Depends(get_state_store),
    crm: CRMClient = Depends(get_crm_client),
):
    application = await store.get_application(application_id)
    owner_contact_id = (body.owner_contact_id if body else None) or application.crm_contact_id
    if not owner_contact_id:
        raise ValidationError("Application has no CRM contact to own the co-applicant records")
    creator = CoApplicantRecordCreator(store.session, crm)
    result = await creator.create_co_applicant_external_records(application_id, owner_contact_id)
    return dict_keys_to_camel(result.to_dict())


@router.post("/contacts/{contact_id}/abandoned")
async def mark_abandoned(
    contact_id: str,
    body: AbandonRequest,
    mapper: ExternalRecordMapper = Depends(get_record_mapper),
):
    await mapper.mark_abandoned(contact_id, body.step)
    return {"success": True}
