from sqlalchemy import Column, DateTime, Float, Integer, String, Text

from database import Base
from utils.dates import utc_now


class Application(Base):
    __tablename__ = "applications"

    id = Column(String(64), primary_key=True, index=True)
    status = Column(String(32), nullable=False, default="draft", index=True)
    # Furthest step successfully committed + 1 (capped at 6)
    current_step = Column(Integer, nullable=False, default=1)
    # Step 6: the property being purchased
    urgency_level = Column(String(64), nullable=True)
    purchase_price = Column(Float, nullable=True)
    deposit_available = Column(Float, nullable=True)
    property_address = Column(Text, nullable=True)
    home_status = Column(String(64), nullable=True)
    property_type = Column(String(64), nullable=True)
    real_estate_agent_contact = Column(Text, nullable=True)
    lawyer_contact = Column(Text, nullable=True)
    additional_notes = Column(Text, nullable=True)
    crm_contact_id = Column(String(128), nullable=True, index=True)
    crm_opportunity_id = Column(String(128), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
