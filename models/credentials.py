from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text

from database import Base
from utils.dates import utc_now


class OAuthToken(Base):
    __tablename__ = "oauth_tokens"

    id = Column(String(64), primary_key=True, index=True)
    # CRM location id
    account_id = Column(String(128), unique=True, nullable=False, index=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class VerificationCode(Base):
    __tablename__ = "verification_codes"

    id = Column(String(64), primary_key=True, index=True)
    email = Column(String(320), nullable=False, index=True)
    code = Column(String(16), nullable=False)
    application_id = Column(String(64), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False)
    contact_id = Column(String(128), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
