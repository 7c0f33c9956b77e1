from django.urls import path
from rest_framework_simplejwt.views import TokenRefreshView

from .api_views import (
    JobCancelView,
    JobCompleteView,
    JobDetailView,
    JobFiltersView,
    JobListCreateView,
    JobPaymentsView,
    JobQuotesView,
    JobSearchView,
    JobSuggestionsView,
    LoginView,
    MyQuotesView,
    NotificationsView,
    ProviderSearchView,
    QuoteAcceptView,
    QuoteTemplateDetailView,
    QuoteTemplatesView,
    SavedJobsView,
)


urlpatterns = [
    path("auth/token/", LoginView.as_view(), name="api_token"),
    path("auth/refresh/", TokenRefreshView.as_view(), name="api_token_refresh"),
    path("jobs/", JobListCreateView.as_view(), name="api_jobs"),
    path("jobs/saved/", SavedJobsView.as_view(), name="api_saved_jobs"),
    path("jobs/search/", JobSearchView.as_view(), name="api_job_search"),
    path("jobs/search/suggestions/", JobSuggestionsView.as_view(), name="api_job_suggestions"),
    path("jobs/filters/", JobFiltersView.as_view(), name="api_job_filters"),
    path("jobs/<int:job_id>/", JobDetailView.as_view(), name="api_job_detail"),
    path("jobs/<int:job_id>/cancel/", JobCancelView.as_view(), name="api_job_cancel"),
    path("jobs/<int:job_id>/complete/", JobCompleteView.as_view(), name="api_job_complete"),
    path("jobs/<int:job_id>/payments/", JobPaymentsView.as_view(), name="api_job_payments"),
    path("jobs/<int:job_id>/quotes/", JobQuotesView.as_view(), name="api_job_quotes"),
    path("jobs/<int:job_id>/quotes/<int:quote_id>/accept/", QuoteAcceptView.as_view(), name="api_quote_accept"),
    path("quotes/mine/", MyQuotesView.as_view(), name="api_my_quotes"),
    path("quotes/templates/", QuoteTemplatesView.as_view(), name="api_quote_templates"),
    path("quotes/templates/<int:template_id>/", QuoteTemplateDetailView.as_view(), name="api_quote_template_detail"),
    path("providers/search/", ProviderSearchView.as_view(), name="api_provider_search"),
    path("notifications/", NotificationsView.as_view(), name="api_notifications"),
]
