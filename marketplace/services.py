from collections import namedtuple

from .crm import CustomerRelationshipSync
from .emails import EmailSender
from .geocoding import PostcodeGeocoder
from .jobs import JobService, get_jobs_index_name
from .notifications import NotificationSink
from .quote_templates import QuoteTemplateService
from .quotes import QuoteService
from .saved_jobs import SavedJobService
from .search import JobSearch, ProviderSearch, get_providers_index_name
from .search_index import build_search_index

MarketplaceServices = namedtuple(
    "MarketplaceServices",
    [
        "jobs",
        "quotes",
        "saved_jobs",
        "quote_templates",
        "job_search",
        "provider_search",
        "notifier",
        "mailer",
        "geocoder",
        "search_index",
        "crm",
    ],
)


def build_services(geocoder=None, search_index=None, notifier=None, mailer=None, crm=None):
    """Wire the marketplace collaborators together; tests pass fakes for any of them."""
    geocoder = geocoder or PostcodeGeocoder()
    search_index = search_index or build_search_index()
    notifier = notifier or NotificationSink()
    mailer = mailer or EmailSender()
    crm = crm or CustomerRelationshipSync()

    jobs = JobService(geocoder, search_index, notifier, mailer, get_jobs_index_name())
    return MarketplaceServices(
        jobs=jobs,
        quotes=QuoteService(notifier, mailer, crm),
        saved_jobs=SavedJobService(),
        quote_templates=QuoteTemplateService(),
        job_search=JobSearch(search_index, jobs, geocoder),
        provider_search=ProviderSearch(search_index, get_providers_index_name()),
        notifier=notifier,
        mailer=mailer,
        geocoder=geocoder,
        search_index=search_index,
        crm=crm,
    )
