import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from api.deps import get_token_vault
from config import settings
from services.token_vault import TokenVault
from utils.exceptions import AppError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/oauth", tags=["oauth"])


def _setup_redirect(outcome: str, **params: str) -> RedirectResponse:
    query = f"?{urlencode(params)}" if params else ""
    return RedirectResponse(f"{settings.setup_redirect_base.rstrip('/')}/{outcome}{query}", status_code=302)


@router.get("/authorize")
async def authorize():
    if not settings.crm_install_url:
        raise HTTPException(status_code=503, detail="CRM install URL is not configured")
    return RedirectResponse(settings.crm_install_url, status_code=302)


@router.get("/callback")
async def callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
    vault: TokenVault = Depends(get_token_vault),
):
    if error or not code:
        logger.warning("OAuth callback without code: %s", error or "missing code")
        return _setup_redirect("error", reason=error or "missing_code")
    try:
        account_id = await vault.exchange_authorization_code(code)
    except AppError as e:
        logger.warning("OAuth code exchange failed: %s", e)
        return _setup_redirect("error", reason="token_exchange_failed")
    return _setup_redirect("success", locationId=account_id)
