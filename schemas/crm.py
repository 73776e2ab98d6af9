from typing import Optional

from pydantic import Field

from schemas.application import CamelModel


class CoApplicantRecordsRequest(CamelModel):
    # Defaults to the application's CRM contact
    owner_contact_id: Optional[str] = None


class AbandonRequest(CamelModel):
    step: int = Field(..., ge=2, le=6)
