from django.contrib.auth.models import User

from marketplace.geocoding import GeocodeResult, normalize_postcode
from marketplace.models import Profile
from marketplace.search_index import EMPTY_RESPONSE, SearchResponse
from marketplace.services import build_services

PASSWORD = "StrongPass123!"


def make_user(username, *, role="customer", tier="basic", email=None, **profile_fields):
    user = User.objects.create_user(
        username=username,
        password=PASSWORD,
        email=f"{username}@example.com" if email is None else email,
        first_name=username.title(),
    )
    Profile.objects.create(user=user, role=role, subscription_tier=tier, **profile_fields)
    return user


class FakeGeocoder:
    def __init__(self, results=None):
        self.results = {normalize_postcode(key): value for key, value in (results or {}).items()}
        self.calls = []

    def resolve(self, postcode):
        self.calls.append(postcode)
        return self.results.get(normalize_postcode(postcode))


def geocoded(postcode, latitude, longitude, district="Unknown", ward="Unknown"):
    return GeocodeResult(postcode, latitude, longitude, district, ward, "England")


class FakeSearchIndex:
    """Scripted responses in call order; raising ``error`` instead when set."""

    enabled = True

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.searches = []
        self.saved = []
        self.deleted = []

    def search(self, index_name, **params):
        self.searches.append(dict(params, index_name=index_name))
        if self.error is not None:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return EMPTY_RESPONSE

    def browse_all(self, index_name, query=""):
        return []

    def save_object(self, index_name, record):
        if self.error is not None:
            raise self.error
        self.saved.append((index_name, record))

    def delete_object(self, index_name, object_id):
        if self.error is not None:
            raise self.error
        self.deleted.append((index_name, object_id))


def response(hits, total=None, pages=1, facets=None):
    return SearchResponse(hits=hits, total=len(hits) if total is None else total, pages=pages, facets=facets or {})


class RecordingNotifier:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def create_notification(self, user_id, kind, message, metadata=None, title=None):
        if self.fail:
            raise RuntimeError("notification sink down")
        self.sent.append({"user_id": user_id, "kind": kind, "message": message, "metadata": metadata, "title": title})

    def kinds_for(self, user_id):
        return [entry["kind"] for entry in self.sent if entry["user_id"] == user_id]


class RecordingMailer:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def _record(self, name, email, *args):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((name, email) + args)
        return True

    def send_new_job_alert(self, email, job, name=None):
        return self._record("new_job_alert", email, job.id)

    def send_new_quote(self, email, job_id, quote_id, name=None):
        return self._record("new_quote", email, job_id, quote_id)

    def send_quote_accepted(self, email, job_id, quote_id, name=None):
        return self._record("quote_accepted", email, job_id, quote_id)

    def send_job_accepted(self, email, job_id, name=None):
        return self._record("job_accepted", email, job_id)

    def send_final_payment_request(self, email, job_id, name=None):
        return self._record("final_payment", email, job_id)

    def recipients(self, name):
        return [entry[1] for entry in self.sent if entry[0] == name]


def fake_services(**overrides):
    collaborators = {
        "geocoder": FakeGeocoder(),
        "search_index": FakeSearchIndex(),
        "notifier": RecordingNotifier(),
        "mailer": RecordingMailer(),
    }
    collaborators.update(overrides)
    return build_services(**collaborators)
