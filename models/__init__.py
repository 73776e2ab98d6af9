from models.application import Application
from models.credentials import OAuthToken, VerificationCode
from models.participant import (
    ROLE_CO_APPLICANT,
    ROLE_PRIMARY,
    ApplicationParticipant,
    EmploymentDetail,
    ExternalRecordLink,
    FinancialCommitment,
    RentalProperty,
)
from models.person import Person, PersonChild

__all__ = [
    "Application",
    "ApplicationParticipant",
    "EmploymentDetail",
    "ExternalRecordLink",
    "FinancialCommitment",
    "OAuthToken",
    "Person",
    "PersonChild",
    "RentalProperty",
    "ROLE_CO_APPLICANT",
    "ROLE_PRIMARY",
    "VerificationCode",
]
