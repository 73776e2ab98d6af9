"""
Email verification gate for re-opening a draft application.

request_continuation answers the same way whether or not the email has an
application, so the endpoint cannot be used to discover who has applied.
Codes are 6 uppercase alphanumerics, single use, matched case-insensitively.
"""
from __future__ import annotations

import logging
import secrets
import string
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import Application, VerificationCode
from services.participant_registry import ParticipantRegistry, normalize_email
from services.record_mapper import ExternalRecordMapper
from utils.dates import ensure_utc, utc_now
from utils.exceptions import AppError, ExpiredVerificationCode, InvalidVerificationCode, ValidationError

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
CONTINUATION_MESSAGE = "If an application exists for this email, a verification code has been sent."
INVALID_CODE_MESSAGE = "Invalid or already used verification code."
EXPIRED_CODE_MESSAGE = "Verification code has expired. Please request a new one."


def generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


class ContinuationService:
    def __init__(
        self,
        session: AsyncSession,
        mapper: Optional[ExternalRecordMapper] = None,
        *,
        ttl_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self.registry = ParticipantRegistry(session)
        self.mapper = mapper
        self.ttl = timedelta(minutes=ttl_minutes or settings.verification_code_ttl_minutes)
        self._clock = clock

    async def request_continuation(self, email: str) -> dict[str, Any]:
        response = {"success": True, "message": CONTINUATION_MESSAGE}
        try:
            email = normalize_email(email)
        except ValidationError:
            return response
        applications = await self.registry.find_applications_for_email(email, status="draft")
        if not applications:
            logger.info("Continuation requested for an email with no draft application")
            return response

        application = applications[0]
        application_id = application.id
        contact_id = application.crm_contact_id
        code = generate_code()
        try:
            self.session.add(
                VerificationCode(
                    id=f"vc-{uuid.uuid4().hex[:12]}",
                    email=email,
                    code=code,
                    application_id=application_id,
                    contact_id=contact_id,
                    expires_at=self._clock() + self.ttl,
                    used=False,
                )
            )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.error("Failed to store verification code for application %s", application_id, exc_info=True)
            return response

        await self._deliver(email, contact_id, code)
        return response

    async def _deliver(self, email: str, contact_id: Optional[str], code: str) -> None:
        if self.mapper is None:
            logger.warning("No CRM connection configured; verification code not delivered")
            return
        try:
            contact_id = contact_id or await self.mapper.find_contact_id(email)
            if not contact_id:
                logger.warning("No CRM contact for continuation email; code not delivered")
                return
            await self.mapper.send_verification_code(contact_id, code, int(self.ttl.total_seconds() // 60))
        except AppError as e:
            logger.warning("Verification code delivery failed: %s", e)

    async def redeem_code(self, email: str, code: str) -> str:
        """Consume a code. Returns the application id it unlocks."""
        try:
            email = normalize_email(email)
        except ValidationError as e:
            raise InvalidVerificationCode(INVALID_CODE_MESSAGE, original_error=e) from e
        code = (code or "").strip().upper()
        result = await self.session.execute(
            select(VerificationCode)
            .where(
                VerificationCode.email == email,
                VerificationCode.code == code,
                VerificationCode.used == False,  # noqa: E712
            )
            .order_by(VerificationCode.created_at.desc())
            .limit(1)
        )
        challenge = result.scalar_one_or_none()
        if challenge is None:
            raise InvalidVerificationCode(INVALID_CODE_MESSAGE)
        if ensure_utc(challenge.expires_at) < self._clock():
            raise ExpiredVerificationCode(EXPIRED_CODE_MESSAGE)

        challenge_id = challenge.id
        application_id = challenge.application_id
        # Conditional update: of two concurrent redemptions only one flips the flag.
        claimed = await self.session.execute(
            update(VerificationCode)
            .where(VerificationCode.id == challenge_id, VerificationCode.used == False)  # noqa: E712
            .values(used=True, used_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self.session.rollback()
            raise InvalidVerificationCode(INVALID_CODE_MESSAGE)
        await self.session.commit()

        found = await self.session.execute(select(Application.id).where(Application.id == application_id))
        if found.scalar_one_or_none() is None:
            raise InvalidVerificationCode(INVALID_CODE_MESSAGE)
        logger.info("Verification code redeemed for application %s", application_id)
        return application_id
