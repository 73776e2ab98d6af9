from pydantic import EmailStr, Field

from schemas.application import CamelModel


class ContinuationRequest(CamelModel):
    email: EmailStr


class ContinuationVerify(CamelModel):
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6)
