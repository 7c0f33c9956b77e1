import logging
from contextlib import contextmanager

from rest_framework import status
from rest_framework.exceptions import APIException


logger = logging.getLogger(__name__)


class MarketplaceError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request could not be processed."
    default_code = "error"


class InvalidInput(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input."
    default_code = "invalid"


class NotAuthorized(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to perform this action."
    default_code = "forbidden"


class StateConflict(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The job is not in a state that allows this action."
    default_code = "state-conflict"


class QuotaExceeded(MarketplaceError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "Monthly quote limit reached."
    default_code = "quote-limit"


class TemplateLimitReached(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Quote template limit reached."
    default_code = "template-limit"


class NotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not-found"


class ExternalServiceError(MarketplaceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "An upstream service is unavailable."
    default_code = "upstream-error"


class OperationFailed(MarketplaceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "The operation failed. Please try again."
    default_code = "operation-failed"


@contextmanager
def best_effort(action, **context):
    """Run a side effect whose failure must not abort the surrounding operation."""
    try:
        yield
    except Exception:
        logger.exception("%s failed %s", action, context or "")
