from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String

from database import Base
from utils.dates import utc_now


class Person(Base):
    __tablename__ = "people"

    id = Column(String(64), primary_key=True, index=True)
    # Stored lower-cased; one row per email across all applications
    email = Column(String(320), unique=True, nullable=False, index=True)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    telephone = Column(String(64), nullable=True)
    mobile = Column(String(64), nullable=True)
    nationality = Column(String(128), nullable=True)
    linkedin_profile_url = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class PersonChild(Base):
    __tablename__ = "person_children"

    id = Column(String(64), primary_key=True, index=True)
    person_id = Column(String(64), ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    date_of_birth = Column(Date, nullable=True)
    age = Column(Integer, nullable=True)
    same_address_as_primary = Column(Boolean, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
