from django.apps import apps
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from .api_serializers import (
    CancelJobSerializer,
    JobWriteSerializer,
    LoginSerializer,
    PaymentSerializer,
    QuoteTemplateSerializer,
    QuoteWriteSerializer,
    SavedJobSerializer,
)
from .exceptions import NotAuthorized, NotFound
from .mappers import serialize_job, serialize_quote
from .notifications import build_notification_entries, get_unread_notifications_count, mark_all_notifications_read
from .quote_templates import serialize_template
from .search import JobSearchParams, get_static_job_params


def get_services():
    return apps.get_app_config("marketplace").services


def get_profile(user):
    return getattr(user, "profile", None)


def is_admin_user(user):
    profile = get_profile(user)
    return bool(user.is_staff or (profile is not None and profile.is_admin))


def is_tradesperson_user(user):
    profile = get_profile(user)
    return bool(profile is not None and profile.is_tradesperson)


def parse_limit(raw, default=20, maximum=100):
    text = str(raw or "").strip()
    return min(maximum, max(1, int(text) if text.isdigit() else default))


def build_identity_payload(user):
    profile = get_profile(user)
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email or "",
        "name": profile.name if profile else user.get_username(),
        "role": profile.role if profile else "customer",
        "subscription_tier": profile.subscription_tier if profile else None,
    }


def load_job(job_id):
    job = get_services().jobs.get_job(job_id)
    if job is None:
        raise NotFound("Job not found.")
    return job


class LoginView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = LoginSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        user = serializer.validated_data["user"]
        refresh = RefreshToken.for_user(user)
        payload = {
            "access": str(refresh.access_token),
            "refresh": str(refresh),
            "user": build_identity_payload(user),
        }
        return Response(payload, status=status.HTTP_200_OK)


class JobListCreateView(APIView):
    def get(self, request):
        jobs = get_services().jobs
        if is_admin_user(request.user):
            after_raw = (request.GET.get("after") or "").strip()
            page = jobs.get_paginated_jobs(
                limit=parse_limit(request.GET.get("limit")),
                after_id=int(after_raw) if after_raw.isdigit() else None,
            )
            return Response(
                {
                    "results": [serialize_job(job) for job in page["jobs"]],
                    "next_cursor": page["next_cursor"],
                    "total": page["total"],
                },
                status=status.HTTP_200_OK,
            )
        if is_tradesperson_user(request.user):
            items = jobs.get_recent_open_jobs(parse_limit(request.GET.get("limit")))
        else:
            items = jobs.get_jobs_by_customer(request.user.id)
        return Response({"results": [serialize_job(job) for job in items]}, status=status.HTTP_200_OK)

    def post(self, request):
        if is_tradesperson_user(request.user):
            raise NotAuthorized("Only customers can post jobs.")
        serializer = JobWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        job = get_services().jobs.create_job(request.user.id, serializer.validated_data)
        return Response(serialize_job(job), status=status.HTTP_201_CREATED)


class JobDetailView(APIView):
    def get(self, request, job_id):
        return Response(serialize_job(load_job(job_id)), status=status.HTTP_200_OK)

    def patch(self, request, job_id):
        job = load_job(job_id)
        if job.customer_id != request.user.id and not is_admin_user(request.user):
            raise NotAuthorized("You can only edit your own jobs.")
        serializer = JobWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        job = get_services().jobs.update_job(job.id, serializer.validated_data)
        return Response(serialize_job(job), status=status.HTTP_200_OK)

    def delete(self, request, job_id):
        if not is_admin_user(request.user):
            raise NotAuthorized("Only administrators can remove jobs.")
        deleted = get_services().jobs.admin_delete_job(job_id, actor=request.user.get_username() or "admin")
        return Response({"deleted": deleted}, status=status.HTTP_200_OK)


class JobCancelView(APIView):
    def post(self, request, job_id):
        serializer = CancelJobSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        job = get_services().jobs.cancel_job(job_id, request.user, serializer.validated_data.get("reason", ""))
        return Response(serialize_job(job), status=status.HTTP_200_OK)


class JobCompleteView(APIView):
    def post(self, request, job_id):
        job = get_services().quotes.mark_job_complete(job_id, request.user.id)
        return Response(serialize_job(job), status=status.HTTP_200_OK)


class JobPaymentsView(APIView):
    def post(self, request, job_id):
        job = load_job(job_id)
        if job.customer_id != request.user.id and not is_admin_user(request.user):
            raise NotAuthorized("You can only record payments for your own jobs.")
        serializer = PaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        job = get_services().jobs.record_payment(
            job.id, data["type"], data["amount"], data["reference"], paid_at=data.get("paid_at")
        )
        return Response(serialize_job(job), status=status.HTTP_200_OK)


class JobSearchView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        params = JobSearchParams.from_query_params(request.GET)
        return Response(get_services().job_search.search(params), status=status.HTTP_200_OK)


class JobSuggestionsView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        suggestions = get_services().jobs.suggest(request.GET.get("q") or "")
        return Response({"suggestions": suggestions}, status=status.HTTP_200_OK)


class JobFiltersView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        payload = get_services().job_search.get_filters()
        payload["static_params"] = get_static_job_params()
        return Response(payload, status=status.HTTP_200_OK)


class JobQuotesView(APIView):
    def get(self, request, job_id):
        job = load_job(job_id)
        if job.customer_id != request.user.id and not is_admin_user(request.user):
            raise NotAuthorized("You can only view quotes for your own jobs.")
        return Response({"results": get_services().quotes.get_quotes_by_job(job.id)}, status=status.HTTP_200_OK)

    def post(self, request, job_id):
        serializer = QuoteWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data, job_id=job_id)
        template_ids = data.pop("template_ids", None) or []
        if template_ids:
            templates = get_services().quote_templates
            data["line_items"] = list(data.get("line_items") or []) + [
                templates.line_item_from_template(request.user.id, template_id) for template_id in template_ids
            ]
        quote = get_services().quotes.create_quote(request.user.id, data)
        return Response(serialize_quote(quote), status=status.HTTP_201_CREATED)


class QuoteAcceptView(APIView):
    def post(self, request, job_id, quote_id):
        job = get_services().quotes.accept_quote(job_id, quote_id, request.user.id)
        return Response(serialize_job(job), status=status.HTTP_200_OK)


class MyQuotesView(APIView):
    def get(self, request):
        if not is_tradesperson_user(request.user):
            raise NotAuthorized("Only tradespeople have quotes.")
        quotes = get_services().quotes.get_quotes_by_tradesperson(request.user.id)
        return Response({"results": quotes}, status=status.HTTP_200_OK)


class SavedJobsView(APIView):
    def get(self, request):
        jobs = get_services().saved_jobs.get_saved_jobs(request.user.id)
        payload = {"saved_jobs": [job.id for job in jobs], "results": [serialize_job(job) for job in jobs]}
        return Response(payload, status=status.HTTP_200_OK)

    def post(self, request):
        serializer = SavedJobSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        job_id = serializer.validated_data["job_id"]
        get_services().saved_jobs.save_job(request.user.id, job_id)
        return Response({"message": "Job saved successfully", "job_id": job_id}, status=status.HTTP_200_OK)

    def delete(self, request):
        serializer = SavedJobSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        removed = get_services().saved_jobs.remove_saved_job(request.user.id, serializer.validated_data["job_id"])
        return Response({"removed": removed}, status=status.HTTP_200_OK)


class QuoteTemplatesView(APIView):
    def get(self, request):
        templates = get_services().quote_templates.get_templates(request.user.id)
        return Response({"templates": templates}, status=status.HTTP_200_OK)

    def post(self, request):
        serializer = QuoteTemplateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        template = get_services().quote_templates.create_template(request.user.id, serializer.validated_data)
        return Response({"template": serialize_template(template)}, status=status.HTTP_201_CREATED)


class QuoteTemplateDetailView(APIView):
    def patch(self, request, template_id):
        serializer = QuoteTemplateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        template = get_services().quote_templates.update_template(
            request.user.id, template_id, serializer.validated_data
        )
        return Response({"template": serialize_template(template)}, status=status.HTTP_200_OK)

    def delete(self, request, template_id):
        get_services().quote_templates.archive_template(request.user.id, template_id)
        return Response({"archived": True}, status=status.HTTP_200_OK)


class ProviderSearchView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        result = get_services().provider_search.search(
            query=request.GET.get("q") or "",
            city=request.GET.get("city"),
            service=request.GET.get("service"),
            page=request.GET.get("page") or 1,
            limit=request.GET.get("limit") or 10,
        )
        return Response(result, status=status.HTTP_200_OK)


class NotificationsView(APIView):
    def get(self, request):
        payload = {
            "unread": get_unread_notifications_count(request.user),
            "results": build_notification_entries(request.user, limit=parse_limit(request.GET.get("limit"), 50)),
        }
        return Response(payload, status=status.HTTP_200_OK)

    def post(self, request):
        updated = mark_all_notifications_read(request.user)
        return Response({"updated": updated, "unread": 0}, status=status.HTTP_200_OK)
