from unittest import mock

from django.apps import apps
from django.core.cache import cache
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from marketplace.models import Job, Notification

from .support import PASSWORD, RecordingMailer, RecordingNotifier, fake_services, make_user


class MarketplaceApiTests(APITestCase):
    def setUp(self):
        cache.clear()
        self.notifier = RecordingNotifier()
        self.services = fake_services(notifier=self.notifier, mailer=RecordingMailer())
        patcher = mock.patch.object(apps.get_app_config("marketplace"), "services", self.services)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.customer = make_user("customer")
        self.plumber = make_user("plumber", role="tradesperson", service_areas="E7", specialties=["Plumbing"])
        self.admin = make_user("moderator", role="admin")

    def create_job(self, **overrides):
        payload = {"title": "Leaking tap", "service_type": "Plumbing", "location": "E7 9JH", "budget": "80.00"}
        payload.update(overrides)
        self.client.force_authenticate(self.customer)
        return self.client.post(reverse("api_jobs"), payload, format="json")

    def test_login_returns_tokens_that_authenticate_requests(self):
        response = self.client.post(reverse("api_token"), {"username": "plumber", "password": PASSWORD}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["user"]["role"], "tradesperson")
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")
        self.assertEqual(self.client.get(reverse("api_my_quotes")).status_code, status.HTTP_200_OK)

    def test_login_rejects_bad_password(self):
        response = self.client.post(reverse("api_token"), {"username": "plumber", "password": "nope"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_anonymous_requests_need_authentication(self):
        self.assertEqual(self.client.get(reverse("api_jobs")).status_code, status.HTTP_401_UNAUTHORIZED)

    def test_customer_posts_a_job_and_matching_tradespeople_are_alerted(self):
        response = self.create_job()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["status"], "open")
        self.assertEqual(response.data["location"]["postcode"], "E7 9JH")
        self.assertEqual(response.data["budget"], 80.0)
        self.assertEqual(self.notifier.kinds_for(self.plumber.id), ["new_job"])

        listing = self.client.get(reverse("api_jobs"))
        self.assertEqual([item["id"] for item in listing.data["results"]], [response.data["id"]])

    def test_job_validation_errors(self):
        response = self.create_job(title="", urgency="whenever")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("title", response.data)
        self.assertIn("urgency", response.data)

    def test_tradespeople_cannot_post_jobs(self):
        self.client.force_authenticate(self.plumber)
        response = self.client.post(reverse("api_jobs"), {"title": "My own job"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_quote_lifecycle(self):
        job_id = self.create_job().data["id"]

        self.client.force_authenticate(self.plumber)
        quote = self.client.post(
            reverse("api_job_quotes", args=[job_id]), {"price": "75.00", "deposit_amount": "20.00"}, format="json"
        )
        self.assertEqual(quote.status_code, status.HTTP_201_CREATED)
        self.assertEqual(quote.data["deposit_amount"], 20.0)

        self.client.force_authenticate(make_user("stranger"))
        forbidden = self.client.post(reverse("api_quote_accept", args=[job_id, quote.data["id"]]))
        self.assertEqual(forbidden.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.customer)
        quotes = self.client.get(reverse("api_job_quotes", args=[job_id]))
        self.assertEqual(len(quotes.data["results"]), 1)
        accepted = self.client.post(reverse("api_quote_accept", args=[job_id, quote.data["id"]]))
        self.assertEqual(accepted.status_code, status.HTTP_200_OK)
        self.assertEqual(accepted.data["status"], "assigned")
        self.assertEqual(accepted.data["tradesperson_id"], self.plumber.id)

        again = self.client.post(reverse("api_quote_accept", args=[job_id, quote.data["id"]]))
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(again.data["detail"].code, "state-conflict")

        self.client.force_authenticate(self.plumber)
        completed = self.client.post(reverse("api_job_complete", args=[job_id]))
        self.assertEqual(completed.data["status"], "completed")

    def test_quota_errors_are_distinguishable(self):
        job_id = self.create_job().data["id"]
        self.client.force_authenticate(self.plumber)
        for _ in range(5):
            self.client.post(reverse("api_job_quotes", args=[job_id]), {"price": "10"}, format="json")

        response = self.client.post(reverse("api_job_quotes", args=[job_id]), {"price": "10"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED)
        self.assertEqual(response.data["detail"].code, "quote-limit")
        self.assertIn("5/5", str(response.data["detail"]))

    def test_deposit_cannot_exceed_price(self):
        job_id = self.create_job().data["id"]
        self.client.force_authenticate(self.plumber)
        response = self.client.post(
            reverse("api_job_quotes", args=[job_id]), {"price": "10", "deposit_amount": "50"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_only_admins_remove_jobs_and_removed_jobs_disappear(self):
        job_id = self.create_job().data["id"]

        self.assertEqual(self.client.delete(reverse("api_job_detail", args=[job_id])).status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        self.assertTrue(self.client.delete(reverse("api_job_detail", args=[job_id])).data["deleted"])
        self.assertFalse(self.client.delete(reverse("api_job_detail", args=[job_id])).data["deleted"])
        self.assertEqual(self.client.get(reverse("api_job_detail", args=[job_id])).status_code, status.HTTP_404_NOT_FOUND)
        self.assertTrue(Job.all_objects.filter(id=job_id, deleted_at__isnull=False).exists())

    def test_owner_can_edit_and_cancel(self):
        job_id = self.create_job().data["id"]

        edited = self.client.patch(reverse("api_job_detail", args=[job_id]), {"urgency": "emergency"}, format="json")
        self.assertEqual(edited.data["urgency"], "emergency")

        cancelled = self.client.post(reverse("api_job_cancel", args=[job_id]), {"reason": "Fixed it myself"}, format="json")
        self.assertEqual(cancelled.data["status"], "cancelled")

    def test_payments_are_recorded_once_per_reference(self):
        job_id = self.create_job().data["id"]
        payload = {"type": "deposit", "amount": "20.00", "reference": "pi_abc"}

        self.client.post(reverse("api_job_payments", args=[job_id]), payload, format="json")
        response = self.client.post(reverse("api_job_payments", args=[job_id]), payload, format="json")

        self.assertEqual(len(response.data["payments"]), 1)
        self.assertEqual(response.data["payments"][0]["amount"], 20.0)

    def test_public_search_endpoints(self):
        self.create_job()
        self.client.force_authenticate(None)

        search = self.client.get(reverse("api_job_search"), {"sort_by": "budget_high"})
        self.assertEqual(search.status_code, status.HTTP_200_OK)
        self.assertEqual(search.data["pagination"]["total_items"], 1)
        self.assertEqual(set(search.data), {"items", "pagination", "filters", "stats"})

        suggestions = self.client.get(reverse("api_job_suggestions"), {"q": "e7"})
        self.assertEqual(suggestions.data["suggestions"], ["E7 9JH"])

        providers = self.client.get(reverse("api_provider_search"))
        self.assertEqual(providers.data["total"], 1)

        filters = self.client.get(reverse("api_job_filters"))
        self.assertIn("static_params", filters.data)

    def test_notifications_listing_and_mark_read(self):
        Notification.objects.create(user=self.customer, kind="new_quote", message="New quote received")
        self.client.force_authenticate(self.customer)

        listing = self.client.get(reverse("api_notifications"))
        self.assertEqual(listing.data["unread"], 1)
        self.assertEqual(listing.data["results"][0]["message"], "New quote received")

        marked = self.client.post(reverse("api_notifications"))
        self.assertEqual(marked.data["updated"], 1)
        self.assertEqual(self.client.get(reverse("api_notifications")).data["unread"], 0)

    def test_pro_tradespeople_save_jobs(self):
        job_id = self.create_job().data["id"]

        self.client.force_authenticate(self.plumber)
        refused = self.client.post(reverse("api_saved_jobs"), {"job_id": job_id}, format="json")
        self.assertEqual(refused.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(make_user("pro", role="tradesperson", tier="pro"))
        saved = self.client.post(reverse("api_saved_jobs"), {"job_id": job_id}, format="json")
        self.assertEqual(saved.data, {"message": "Job saved successfully", "job_id": job_id})
        missing = self.client.post(reverse("api_saved_jobs"), {"job_id": 99999}, format="json")
        self.assertEqual(missing.status_code, status.HTTP_404_NOT_FOUND)

        listing = self.client.get(reverse("api_saved_jobs"))
        self.assertEqual(listing.data["saved_jobs"], [job_id])
        self.assertEqual(listing.data["results"][0]["title"], "Leaking tap")

        removed = self.client.delete(reverse("api_saved_jobs"), {"job_id": job_id}, format="json")
        self.assertTrue(removed.data["removed"])
        self.assertEqual(self.client.get(reverse("api_saved_jobs")).data["saved_jobs"], [])

    def test_quote_templates_endpoints(self):
        self.client.force_authenticate(self.plumber)
        payload = {
            "label": "Tap washer",
            "category": "materials",
            "description": "Replacement washer",
            "unit": "item",
            "default_quantity": "2",
            "unit_price": "3.50",
        }

        created = self.client.post(reverse("api_quote_templates"), payload, format="json")
        self.assertEqual(created.status_code, status.HTTP_201_CREATED)
        template_id = created.data["template"]["id"]
        self.assertEqual(created.data["template"]["unit_price"], 3.5)

        listing = self.client.get(reverse("api_quote_templates"))
        self.assertEqual([item["id"] for item in listing.data["templates"]][-1], template_id)

        edited = self.client.patch(
            reverse("api_quote_template_detail", args=[template_id]), {"unit_price": "4.00"}, format="json"
        )
        self.assertEqual(edited.data["template"]["unit_price"], 4.0)

        self.client.force_authenticate(make_user("rival", role="tradesperson"))
        stolen = self.client.delete(reverse("api_quote_template_detail", args=[template_id]))
        self.assertEqual(stolen.status_code, status.HTTP_403_FORBIDDEN)

    def test_basic_template_limit_has_its_own_code(self):
        self.client.force_authenticate(self.plumber)
        payload = {
            "label": "Labour",
            "category": "labour",
            "description": "Hourly rate",
            "unit": "hour",
            "default_quantity": "1",
            "unit_price": "40",
        }
        for _ in range(5):
            self.client.post(reverse("api_quote_templates"), payload, format="json")

        response = self.client.post(reverse("api_quote_templates"), payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["detail"].code, "template-limit")
        self.assertIn("5/5", str(response.data["detail"]))

    def test_quotes_can_be_built_from_templates(self):
        job_id = self.create_job().data["id"]
        self.client.force_authenticate(self.plumber)

        quote = self.client.post(
            reverse("api_job_quotes", args=[job_id]),
            {"price": "140.00", "template_ids": ["system-callout", "system-labour-hour"]},
            format="json",
        )

        self.assertEqual(quote.status_code, status.HTTP_201_CREATED)
        self.assertEqual([item["label"] for item in quote.data["line_items"]], ["Call-out fee", "Labour (hourly)"])
        self.assertEqual(quote.data["line_items"][0]["unit_price"], 60.0)

        unknown = self.client.post(
            reverse("api_job_quotes", args=[job_id]), {"price": "10", "template_ids": ["nope"]}, format="json"
        )
        self.assertEqual(unknown.status_code, status.HTTP_404_NOT_FOUND)
