"""
Process-wide CRM objects and per-request service wiring.
"""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import AsyncSessionLocal, get_db
from services.application_state import ApplicationStateStore
from services.crm_client import CRMClient
from services.record_mapper import ExternalRecordMapper
from services.token_vault import TokenVault


@lru_cache
def get_token_vault() -> TokenVault:
    # One vault per process so the per-account refresh locks are shared by all requests.
    return TokenVault(AsyncSessionLocal)


@lru_cache
def get_crm_client() -> CRMClient:
    return CRMClient(get_token_vault())


@lru_cache
def get_record_mapper() -> ExternalRecordMapper:
    return ExternalRecordMapper(get_crm_client())


def get_state_store(
    db: AsyncSession = Depends(get_db),
    mapper: ExternalRecordMapper = Depends(get_record_mapper),
) -> ApplicationStateStore:
    return ApplicationStateStore(db, mapper)


async def close_clients() -> None:
    if get_crm_client.cache_info().currsize:
        await get_crm_client().aclose()
    if get_token_vault.cache_info().currsize:
        await get_token_vault().aclose()
