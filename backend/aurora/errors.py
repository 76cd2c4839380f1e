"""Typed failures raised by the services and rendered by the app's exception handlers.

Each class carries the HTTP status it maps to and a stable ``kind`` string so a
client can tell "fix your input" from "not allowed", "unavailable" and
"try again later" without parsing the message.
"""

from typing import Dict, Optional


class AuroraError(Exception):
	status_code = 500
	kind = "error"

	def __init__(self, message: str, headers: Optional[Dict[str, str]] = None) -> None:
		super().__init__(message)
		self.message = message
		self.headers = headers


class ValidationError(AuroraError):
	status_code = 400
	kind = "validation_error"


class Unauthorized(AuroraError):
	status_code = 401
	kind = "unauthorized"


class Forbidden(AuroraError):
	status_code = 403
	kind = "forbidden"


class NotFound(AuroraError):
	status_code = 404
	kind = "not_found"


class ConflictError(AuroraError):
	status_code = 409
	kind = "conflict"


class NotAvailable(AuroraError):
	status_code = 409
	kind = "not_available"


class TooEarly(NotAvailable):
	kind = "too_early"


class TooLate(NotAvailable):
	kind = "too_late"


class Locked(NotAvailable):
	status_code = 423
	kind = "locked"


class TimeExpired(NotAvailable):
	status_code = 403
	kind = "time_expired"


class AttemptLimitReached(AuroraError):
	status_code = 409
	kind = "attempt_limit_reached"


class AlreadySubmitted(AuroraError):
	status_code = 409
	kind = "already_submitted"


class StorageError(AuroraError):
	status_code = 503
	kind = "storage_error"


class RateLimited(AuroraError):
	status_code = 429
	kind = "rate_limited"


class UpstreamError(AuroraError):
	status_code = 502
	kind = "upstream_error"


class NotConfigured(AuroraError):
	status_code = 503
	kind = "not_configured"
