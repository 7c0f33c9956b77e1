import logging
import traceback

from django.conf import settings
from django.core.exceptions import PermissionDenied, SuspiciousOperation
from django.http import Http404
from rest_framework.views import exception_handler

from .exceptions import MarketplaceError
from .models import ErrorLog

logger = logging.getLogger(__name__)

EXPECTED_EXCEPTIONS = (Http404, PermissionDenied, SuspiciousOperation)


def client_ip(request):
    forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR", "")
    candidate = forwarded_for.split(",")[0] if forwarded_for else request.META.get("REMOTE_ADDR", "")
    return (candidate or "").strip()[:64]


def status_for(exception):
    try:
        return int(getattr(exception, "status_code", 500) or 500)
    except (TypeError, ValueError):
        return 500


def needs_triage(exception):
    """Marketplace client errors (bad input, quota, state) are outcomes, not faults."""
    if isinstance(exception, EXPECTED_EXCEPTIONS):
        return False
    if isinstance(exception, MarketplaceError):
        return exception.status_code >= 500
    return True


def describe(exception):
    """Return ``(error_code, message)``; marketplace faults carry the failure they replaced."""
    if not isinstance(exception, MarketplaceError):
        return exception.__class__.__name__, str(exception) or exception.__class__.__name__
    code = getattr(exception.detail, "code", None) or exception.default_code
    message = str(exception.detail)
    cause = exception.__cause__ or exception.__context__
    if cause is not None:
        message = f"{message} ({cause.__class__.__name__}: {cause})"
    return code, message


def record_error(request, exception):
    if request is None or not getattr(settings, "ERROR_LOGGING_ENABLED", True):
        return None
    if not needs_triage(exception):
        return None

    try:
        traceback_max_chars = max(500, int(getattr(settings, "ERROR_LOG_TRACEBACK_MAX_CHARS", 12000)))
        code, message = describe(exception)
        user = getattr(request, "user", None)
        return ErrorLog.objects.create(
            path=(request.path or "")[:300],
            method=(request.method or "")[:10],
            status_code=status_for(exception),
            error_code=code[:40],
            message=message[:500],
            traceback="".join(traceback.format_exception(type(exception), exception, exception.__traceback__))[
                :traceback_max_chars
            ],
            request_id=request.headers.get("X-Request-ID", "")[:120],
            ip_address=client_ip(request),
            user_agent=request.META.get("HTTP_USER_AGENT", "")[:255],
            user=user if user is not None and user.is_authenticated else None,
        )
    except Exception:
        logger.exception("Could not persist error log for %s %s", request.method, request.path)
        return None


def api_exception_handler(exc, context):
    """DRF renders marketplace errors itself, so server-side ones are triaged here."""
    response = exception_handler(exc, context)
    if response is not None and isinstance(exc, MarketplaceError):
        record_error(context.get("request"), exc)
    return response


class ErrorLoggingMiddleware:
    """Persist exceptions that escape the views to ``ErrorLog``."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        return self.get_response(request)

    def process_exception(self, request, exception):
        record_error(request, exception)
        return None
