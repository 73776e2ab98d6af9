from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from database import Base
from utils.dates import utc_now

ROLE_PRIMARY = "primary"
ROLE_CO_APPLICANT = "co_applicant"


class ApplicationParticipant(Base):
    __tablename__ = "application_participants"
    __table_args__ = (
        UniqueConstraint("application_id", "person_id", name="uq_participant_application_person"),
        # At most one primary per application
        Index(
            "uq_participant_one_primary",
            "application_id",
            unique=True,
            sqlite_where=text(f"role = '{ROLE_PRIMARY}'"),
            postgresql_where=text(f"role = '{ROLE_PRIMARY}'"),
        ),
    )

    id = Column(String(64), primary_key=True, index=True)
    application_id = Column(String(64), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True)
    person_id = Column(String(64), ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(32), nullable=False)
    # 1 = primary; co-applicants 2..N, contiguous
    order = Column("participant_order", Integer, nullable=False)
    relationship_to_primary = Column(String(64), nullable=True)
    marital_status = Column(String(64), nullable=True)
    # Step 3: address and living situation
    same_address_as_primary = Column(Boolean, nullable=True)
    current_address = Column(Text, nullable=True)
    move_in_date = Column(Date, nullable=True)
    homeowner_or_tenant = Column(String(32), nullable=True)
    monthly_mortgage_or_rent = Column(Float, nullable=True)
    monthly_payment_currency = Column(String(8), nullable=False, default="EUR")
    current_property_value = Column(Float, nullable=True)
    property_value_currency = Column(String(8), nullable=False, default="EUR")
    mortgage_outstanding = Column(Float, nullable=True)
    mortgage_outstanding_currency = Column(String(8), nullable=False, default="EUR")
    lender_or_landlord_details = Column(Text, nullable=True)
    tax_country = Column(String(128), nullable=True)
    same_children_as_primary = Column(Boolean, nullable=True)
    # Step 4 / 5 scalars
    employment_status = Column(String(64), nullable=True)
    other_assets = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class EmploymentDetail(Base):
    __tablename__ = "employment_details"

    id = Column(String(64), primary_key=True, index=True)
    participant_id = Column(
        String(64), ForeignKey("application_participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    job_title = Column(String(256), nullable=True)
    employer_name = Column(String(256), nullable=True)
    employer_address = Column(Text, nullable=True)
    gross_annual_salary = Column(Float, nullable=True)
    net_monthly_income = Column(Float, nullable=True)
    employment_start_date = Column(Date, nullable=True)
    previous_employment_details = Column(Text, nullable=True)
    business_name = Column(String(256), nullable=True)
    business_address = Column(Text, nullable=True)
    business_website = Column(String(512), nullable=True)
    company_creation_date = Column(Date, nullable=True)
    total_gross_annual_income = Column(Float, nullable=True)
    net_annual_income = Column(Float, nullable=True)
    bonus_overtime_commission_details = Column(Text, nullable=True)
    company_stake_percentage = Column(Float, nullable=True)
    accountant_can_provide_info = Column(Boolean, nullable=True)
    accountant_contact_details = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class FinancialCommitment(Base):
    __tablename__ = "financial_commitments"

    id = Column(String(64), primary_key=True, index=True)
    participant_id = Column(
        String(64), ForeignKey("application_participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    personal_loans = Column(Float, nullable=True)
    credit_card_debt = Column(Float, nullable=True)
    car_loans_lease = Column(Float, nullable=True)
    total_monthly_commitments = Column(Float, nullable=True)
    has_credit_or_legal_issues = Column(Boolean, nullable=False, default=False)
    credit_legal_issues_details = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class RentalProperty(Base):
    __tablename__ = "rental_properties"

    id = Column(String(64), primary_key=True, index=True)
    participant_id = Column(
        String(64), ForeignKey("application_participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    property_address = Column(Text, nullable=True)
    current_valuation = Column(Float, nullable=True)
    mortgage_outstanding = Column(Float, nullable=True)
    monthly_mortgage_payment = Column(Float, nullable=True)
    monthly_rent_received = Column(Float, nullable=True)
    purchase_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class ExternalRecordLink(Base):
    """
    Marks that a co-applicant's CRM custom-object record exists.

    A row with no record_id is a claim taken before the CRM call; only the
    request holding the claim creates the record.
    """

    __tablename__ = "external_record_links"

    id = Column(String(64), primary_key=True, index=True)
    participant_id = Column(
        String(64),
        ForeignKey("application_participants.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )
    object_key = Column(String(128), nullable=False)
    record_id = Column(String(128), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
