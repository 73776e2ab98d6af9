from fastapi import APIRouter, Depends

from api.deps import get_state_store
from schemas.continuation import ContinuationRequest, ContinuationVerify
from services.application_state import ApplicationStateStore
from utils.case import dict_keys_to_camel

router = APIRouter(prefix="/api/continuations", tags=["continuations"])


@router.post("/request")
async def request_code(body: ContinuationRequest, store: ApplicationStateStore = Depends(get_state_store)):
    return await store.request_continuation(body.email)


@router.post("/verify")
async def verify_code(body: ContinuationVerify, store: ApplicationStateStore = Depends(get_state_store)):
    application_id = await store.redeem_code(body.email, body.code)
    return {
        "applicationId": application_id,
        "application": dict_keys_to_camel(await store.load_application(application_id)),
    }
