"""Error taxonomy shared by the gateway, the worker and the external clients."""

from typing import Optional


class ConfigurationError(Exception):
    """A credential or endpoint required by a feature is not configured."""


class SignatureError(Exception):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid webhook signature: {reason}")


class MalformedPayloadError(Exception):
    pass


class StoreUnavailableError(Exception):
    pass


class ExternalServiceError(Exception):
    retryable = False

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service} error: {status_code or '-'} {message}"[:500])


class RetryableExternalError(ExternalServiceError):
    """Rate limit, server error or timeout; safe to retry with backoff."""

    retryable = True


class NonRetryableExternalError(ExternalServiceError):
    pass


class PermanentEventError(Exception):
    """A claimed event that can never be processed successfully."""


RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})


def classify_http_error(service: str, status_code: int, message: str) -> ExternalServiceError:
    if status_code in RETRYABLE_STATUS_CODES or 500 <= status_code <= 599:
        return RetryableExternalError(service, message, status_code)
    return NonRetryableExternalError(service, message, status_code)
