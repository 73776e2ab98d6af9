from schemas.application import (
    CO_APPLICANT_STEP_SCHEMAS,
    STEP_SCHEMAS,
    ApplicationPatch,
    CamelModel,
    ChildSchema,
    CoApplicantPersonalSchema,
    EmploymentDetailsSchema,
    EmploymentSchema,
    FinancialCommitmentsSchema,
    HomeSchema,
    RentalPropertySchema,
    Step1Schema,
    Step2Schema,
    Step3Schema,
    Step4Schema,
    Step5Schema,
    Step6Schema,
)
from schemas.continuation import ContinuationRequest, ContinuationVerify
from schemas.crm import AbandonRequest, CoApplicantRecordsRequest

__all__ = [
    "AbandonRequest",
    "ApplicationPatch",
    "CamelModel",
    "ChildSchema",
    "CoApplicantPersonalSchema",
    "CoApplicantRecordsRequest",
    "CO_APPLICANT_STEP_SCHEMAS",
    "ContinuationRequest",
    "ContinuationVerify",
    "EmploymentDetailsSchema",
    "EmploymentSchema",
    "FinancialCommitmentsSchema",
    "HomeSchema",
    "RentalPropertySchema",
    "STEP_SCHEMAS",
    "Step1Schema",
    "Step2Schema",
    "Step3Schema",
    "Step4Schema",
    "Step5Schema",
    "Step6Schema",
]
