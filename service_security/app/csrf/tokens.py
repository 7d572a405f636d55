"""
Stateless CSRF token service.

Tokens have the shape ``subject_id:nonce:issued_at_ms:signature`` where the
signature is ``sha256_hex("subject_id:nonce:issued_at_ms" + secret)``.
Nothing is stored server side; validity is recomputed on every request.
"""

import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from homebase_shared.errors import ValidationError
from homebase_shared.logging import get_logger
from homebase_shared.metrics import MetricsCollector


CSRF_HEADER = "X-CSRF-Token"
STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60

TOKEN_REQUIRED_MESSAGE = "CSRF token is required for this operation"
TOKEN_INVALID_MESSAGE = "Invalid or expired CSRF token"


def requires_csrf_protection(method: str) -> bool:
    """Only state-changing methods carry a token."""
    return method.upper() in STATE_CHANGING_METHODS


@dataclass(frozen=True)
class CSRFValidation:
    valid: bool
    error: Optional[str] = None


class CSRFTokenService:
    """Issues and validates signed, subject-bound, time-limited tokens."""

    def __init__(
        self,
        secret: str,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValidationError("CSRF secret must not be empty")
        self._secret = secret
        self.max_age_seconds = max_age_seconds
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("security.csrf")

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _sign(self, subject_id: str, nonce: str, issued_at_ms: str) -> str:
        data = f"{subject_id}:{nonce}:{issued_at_ms}"
        return hashlib.sha256((data + self._secret).encode("utf-8")).hexdigest()

    def generate(self, subject_id: str) -> str:
        """Generate a token bound to ``subject_id``."""
        if not subject_id or ":" in subject_id:
            raise ValidationError("Subject id cannot be encoded in a CSRF token", {"subject_id": subject_id})

        nonce = secrets.token_hex(32)
        issued_at_ms = str(self._now_ms())
        signature = self._sign(subject_id, nonce, issued_at_ms)
        return f"{subject_id}:{nonce}:{issued_at_ms}:{signature}"

    def validate(self, token: str, subject_id: str) -> bool:
        """True only if the token parses, matches the subject, is fresh, and is correctly signed."""
        parts = token.split(":")
        if len(parts) != 4:
            return False

        token_subject, nonce, issued_at_ms, signature = parts
        if token_subject != subject_id:
            return False

        if not (issued_at_ms.isascii() and issued_at_ms.isdigit()):
            return False
        if self._now_ms() - int(issued_at_ms) > self.max_age_seconds * 1000:
            return False

        expected = self._sign(subject_id, nonce, issued_at_ms)
        return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))

    def validate_request(self, method: str, token: Optional[str], subject_id: str) -> CSRFValidation:
        """Validate the token a request carries, if its method needs one."""
        if not requires_csrf_protection(method):
            return CSRFValidation(valid=True)

        if not token:
            self._record("missing")
            return CSRFValidation(valid=False, error=TOKEN_REQUIRED_MESSAGE)

        if not self.validate(token, subject_id):
            self._record("invalid")
            return CSRFValidation(valid=False, error=TOKEN_INVALID_MESSAGE)

        self._record("valid")
        return CSRFValidation(valid=True)

    def issue(self, subject_id: str) -> Dict[str, Any]:
        """Token issuance payload: ``{csrfToken, expiresAt}``."""
        token = self.generate(subject_id)
        expires_at = datetime.fromtimestamp(self.clock() + self.max_age_seconds, tz=timezone.utc)
        self.logger.info("CSRF token issued", subject_id=subject_id)
        return {
            "csrfToken": token,
            "expiresAt": expires_at.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        }

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("csrf_validations_total", outcome=outcome)
