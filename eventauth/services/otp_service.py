"""One-time passcodes for email-verified registration."""

import hmac
import secrets
import time
from typing import Callable, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from eventauth.models.user import PendingOTP, PendingRegistration
from eventauth.services.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

OTP_TTL_SECONDS = 600


def generate_otp() -> str:
    """Return a random 6-digit numeric code (100000-999999)."""
    return str(100000 + secrets.randbelow(900000))


class OTPService:
    """Stores pending registrations by email until their code is verified."""

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = OTP_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def store_otp(self, registration: PendingRegistration) -> str:
        """Create (or replace) the pending entry for the registration's email.

        Returns:
            The generated code, for delivery by email only
        """
        otp = generate_otp()
        entry = PendingOTP(
            otp=otp,
            registration=registration,
            expires_at=self._clock() + self.ttl_seconds,
        )
        await self.store.set(registration.email, entry.model_dump_json(), self.ttl_seconds)
        logger.info("otp_stored", email=registration.email, ttl_seconds=self.ttl_seconds)
        return otp

    async def verify_otp(self, email: str, otp: str) -> Optional[PendingRegistration]:
        """Consume the pending entry for ``email`` if ``otp`` matches.

        A wrong code leaves the entry in place. An expired entry is deleted.
        Only the caller that removes the exact entry it read gets the
        registration, so a code never consumes a newer pending entry.

        Returns:
            The stored registration on success, None otherwise
        """
        raw = await self.store.get(email)
        if raw is None:
            logger.info("otp_not_found", email=email)
            return None

        try:
            entry = PendingOTP.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("otp_entry_corrupt", email=email)
            await self.store.delete_if(email, raw)
            return None

        if self._clock() > entry.expires_at:
            await self.store.delete_if(email, raw)
            logger.info("otp_expired", email=email)
            return None

        if not hmac.compare_digest(entry.otp, otp):
            logger.info("otp_mismatch", email=email)
            return None

        # A re-registration may have replaced the entry since it was read
        if not await self.store.delete_if(email, raw):
            logger.warning("otp_already_consumed", email=email)
            return None

        logger.info("otp_verified", email=email)
        return entry.registration

    async def discard(self, email: str) -> None:
        await self.store.delete(email)
