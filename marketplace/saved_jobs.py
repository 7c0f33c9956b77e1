import logging

from django.db import DatabaseError

from .constants import PAID_TIERS
from .exceptions import NotAuthorized, NotFound, OperationFailed
from .models import Job, Profile, SavedJob

logger = logging.getLogger(__name__)


class SavedJobService:
    """Bookmarked jobs for pro and business tradespeople."""

    def _require_saver(self, user_id):
        profile = Profile.objects.filter(user_id=user_id).first()
        if profile is None or not profile.is_tradesperson:
            raise NotAuthorized("Only tradespeople can save jobs.")
        if profile.subscription_tier not in PAID_TIERS:
            raise NotAuthorized("Saving jobs is a Pro feature. Please upgrade.")
        return profile

    def save_job(self, user_id, job_id):
        """Idempotent: saving an already saved job returns the existing bookmark."""
        self._require_saver(user_id)
        job = Job.objects.filter(id=job_id).first()
        if job is None:
            raise NotFound("Job not found.")
        try:
            saved, created = SavedJob.objects.get_or_create(user_id=user_id, job=job)
        except DatabaseError:
            logger.exception("Saving job %s for %s failed", job_id, user_id)
            raise OperationFailed("Failed to save job.")
        if created:
            logger.info("Job %s saved by %s", job_id, user_id)
        return saved

    def remove_saved_job(self, user_id, job_id):
        self._require_saver(user_id)
        try:
            removed, _ = SavedJob.objects.filter(user_id=user_id, job_id=job_id).delete()
        except DatabaseError:
            logger.exception("Removing saved job %s for %s failed", job_id, user_id)
            raise OperationFailed("Failed to remove saved job.")
        return removed > 0

    def get_saved_jobs(self, user_id):
        """Saved jobs newest-saved first; jobs removed by an admin drop out."""
        self._require_saver(user_id)
        try:
            saves = (
                SavedJob.objects.filter(user_id=user_id, job__deleted_at__isnull=True)
                .select_related("job")
                .order_by("-created_at", "-id")
            )
            return [saved.job for saved in saves]
        except DatabaseError:
            logger.exception("Loading saved jobs for %s failed", user_id)
            raise OperationFailed("Failed to get saved jobs.")

    def get_saved_job_ids(self, user_id):
        return [job.id for job in self.get_saved_jobs(user_id)]
