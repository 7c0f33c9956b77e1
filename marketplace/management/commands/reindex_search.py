from uuid import uuid4

from django.apps import apps
from django.conf import settings
from django.core.cache import cache
from django.core.management.base import BaseCommand, CommandError

from marketplace.mappers import job_index_record, provider_index_record
from marketplace.models import Job, Profile

LOCK_KEY = "reindex_search:lock"


class Command(BaseCommand):
    help = "Pushes every live job and tradesperson profile to the search index."

    def add_arguments(self, parser):
        parser.add_argument(
            "--only",
            choices=("jobs", "providers"),
            help="Reindex just one of the two indexes.",
        )
        parser.add_argument(
            "--lock-ttl",
            type=int,
            default=0,
            help="Seconds the run lock is held before it expires (default: REINDEX_LOCK_TTL_SECONDS or 600).",
        )

    def handle(self, *args, **options):
        services = apps.get_app_config("marketplace").services
        if not getattr(services.search_index, "enabled", False):
            raise CommandError("Search index is not configured (SEARCH_INDEX_APP_ID / SEARCH_INDEX_API_KEY).")

        lock_ttl = int(options["lock_ttl"] or getattr(settings, "REINDEX_LOCK_TTL_SECONDS", 600))
        if lock_ttl < 10:
            raise CommandError("--lock-ttl must be >= 10")

        token = uuid4().hex
        if not cache.add(LOCK_KEY, token, timeout=lock_ttl):
            self.stdout.write(self.style.WARNING("Reindex skipped: another run currently holds the lock."))
            return

        try:
            only = options.get("only")
            if only in (None, "jobs"):
                count = self._push(
                    services.search_index,
                    services.jobs.index_name,
                    Job.objects.exclude(status="cancelled").order_by("id"),
                    job_index_record,
                )
                self.stdout.write(self.style.SUCCESS(f"Indexed {count} job(s)."))
            if only in (None, "providers"):
                count = self._push(
                    services.search_index,
                    services.provider_search.index_name,
                    Profile.objects.filter(role="tradesperson").select_related("user").order_by("id"),
                    provider_index_record,
                )
                self.stdout.write(self.style.SUCCESS(f"Indexed {count} provider(s)."))
        finally:
            if cache.get(LOCK_KEY) == token:
                cache.delete(LOCK_KEY)

    def _push(self, search_index, index_name, queryset, to_record):
        count = 0
        for item in queryset.iterator():
            search_index.save_object(index_name, to_record(item))
            count += 1
        return count
