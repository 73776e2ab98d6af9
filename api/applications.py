from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from api.deps import get_state_store
from schemas.application import CO_APPLICANT_STEP_SCHEMAS, STEP_SCHEMAS, ApplicationPatch, CoApplicantPersonalSchema
from services.application_state import ApplicationStateStore, StepCommitResult
from utils.case import dict_keys_to_camel

router = APIRouter(prefix="/api/applications", tags=["applications"])


def _parse(schema: type[BaseModel], body: dict[str, Any]) -> dict[str, Any]:
    """Validate against a step schema; only keys the client sent are kept."""
    try:
        parsed = schema.model_validate(body)
    except SchemaValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    return parsed.model_dump(exclude_unset=True)


def _step_response(result: StepCommitResult):
    content = dict_keys_to_camel(result.to_dict())
    if not result.saved:
        # Client stays on the step and keeps its local edits
        return JSONResponse(status_code=500, content=content)
    return content


def _co_applicant_to_response(entry: dict[str, Any], index: int) -> dict[str, Any]:
    return dict_keys_to_camel({"index": index, **entry})


@router.post("", status_code=201)
async def create_application(store: ApplicationStateStore = Depends(get_state_store)):
    application_id = await store.start_application()
    return dict_keys_to_camel(await store.load_application(application_id))


@router.get("/{application_id}")
async def get_application(application_id: str, store: ApplicationStateStore = Depends(get_state_store)):
    return dict_keys_to_camel(await store.load_application(application_id))


@router.patch("/{application_id}")
async def patch_application(
    application_id: str,
    body: ApplicationPatch,
    store: ApplicationStateStore = Depends(get_state_store),
):
    await store.update_metadata(application_id, body.model_dump(exclude_unset=True))
    return dict_keys_to_camel(await store.load_application(application_id))


@router.post("/{application_id}/steps/{step_number}")
async def save_step(
    application_id: str,
    step_number: int,
    body: dict[str, Any] = Body(...),
    store: ApplicationStateStore = Depends(get_state_store),
):
    schema = STEP_SCHEMAS.get(step_number)
    if schema is None:
        raise HTTPException(status_code=404, detail="Unknown step")
    result = await store.commit_step(application_id, step_number, _parse(schema, body))
    return _step_response(result)


@router.post("/{application_id}/co-applicants/{index}/steps/{step_number}")
async def save_co_applicant_step(
    application_id: str,
    index: int,
    step_number: int,
    body: dict[str, Any] = Body(...),
    store: ApplicationStateStore = Depends(get_state_store),
):
    schema = CO_APPLICANT_STEP_SCHEMAS.get(step_number)
    if schema is None:
        raise HTTPException(status_code=404, detail="Only steps 3 and 4 are saved per co-applicant")
    result = await store.commit_step(application_id, step_number, _parse(schema, body), participant_index=index)
    return _step_response(result)


@router.get("/{application_id}/co-applicants")
async def list_co_applicants(application_id: str, store: ApplicationStateStore = Depends(get_state_store)):
    view = await store.load_application(application_id)
    return [_co_applicant_to_response(entry, i) for i, entry in enumerate(view["step2"]["co_applicants"])]


@router.post("/{application_id}/co-applicants", status_code=201)
async def add_co_applicant(
    application_id: str,
    body: CoApplicantPersonalSchema,
    store: ApplicationStateStore = Depends(get_state_store),
):
    fields = body.model_dump(exclude_unset=True)
    participant = await store.registry.add_co_applicant(application_id, fields)
    participant_id = participant.id
    await store.session.commit()
    report = await store.sync.save_about_you(participant_id, fields)
    if not report.ok:
        raise HTTPException(status_code=500, detail=report.error)
    view = await store.load_application(application_id)
    entries = view["step2"]["co_applicants"]
    index = next(i for i, entry in enumerate(entries) if entry["participant_id"] == participant_id)
    return _co_applicant_to_response(entries[index], index)


@router.delete("/{application_id}/co-applicants/{index}", status_code=204)
async def delete_co_applicant(
    application_id: str,
    index: int,
    store: ApplicationStateStore = Depends(get_state_store),
):
    await store.registry.get_application(application_id)
    await store.registry.remove_co_applicant(application_id, index)
    await store.session.commit()
