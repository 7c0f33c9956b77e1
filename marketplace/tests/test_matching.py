from django.test import TestCase

from marketplace.matching import (
    area_match,
    derive_metro_region,
    dispatch_job_alerts,
    find_matching_tradespeople,
    postcode_prefix,
    specialty_match,
)
from marketplace.models import Job

from .support import RecordingMailer, RecordingNotifier, make_user


class MatchingHelperTests(TestCase):
    def test_postcode_prefix(self):
        self.assertEqual(postcode_prefix("E7 9JH"), "e7")
        self.assertEqual(postcode_prefix("  SW2 "), "sw2")
        self.assertEqual(postcode_prefix(""), "")

    def test_metro_region_prefixes(self):
        self.assertEqual(derive_metro_region("EC1A"), "central")
        self.assertEqual(derive_metro_region("wc2"), "central")
        self.assertEqual(derive_metro_region("W1D"), "central")
        self.assertEqual(derive_metro_region("NW3"), "north")
        self.assertEqual(derive_metro_region("N1"), "north")
        self.assertEqual(derive_metro_region("SE10"), "south")
        self.assertEqual(derive_metro_region("SW2"), "south")
        self.assertEqual(derive_metro_region("E7"), "east")
        self.assertEqual(derive_metro_region("W5"), "west")
        self.assertIsNone(derive_metro_region("M1"))

    def test_area_match_by_token_or_region_phrase(self):
        self.assertEqual(area_match("Covers E7, E15 and Stratford", ["e7"]), "token:e7")
        self.assertEqual(area_match("All of East London", ["e7"], region="east", metro="london"), "region:east")
        self.assertIsNone(area_match("North London only", ["e7"], region="east", metro="london"))
        self.assertIsNone(area_match("", ["e7"]))

    def test_specialty_match_is_case_insensitive_containment(self):
        self.assertTrue(specialty_match("Plumbing", ["plumbing"]))
        self.assertTrue(specialty_match("Plumbing", ["General Plumbing"]))
        self.assertFalse(specialty_match("Plumbing", ["Electrical"]))
        self.assertFalse(specialty_match("", ["Plumbing"]))


class FindMatchingTradespeopleTests(TestCase):
    def setUp(self):
        self.customer = make_user("customer")
        self.job = Job.objects.create(
            customer=self.customer,
            title="Leaking tap",
            service_type="Plumbing",
            postcode="E7 9JH",
            town="London",
            city_slug="london",
        )

    def test_tiers_are_bucketed_and_non_matches_excluded(self):
        business = make_user("biz", role="tradesperson", tier="business", service_areas="East London", specialties=["Plumbing"])
        pro = make_user("pro", role="tradesperson", tier="pro", service_areas="E7, E15", specialties=["General Plumbing"])
        basic = make_user("basic", role="tradesperson", service_areas="london", specialties=["plumbing"])
        make_user("wrongarea", role="tradesperson", service_areas="Manchester", specialties=["Plumbing"])
        make_user("wrongtrade", role="tradesperson", service_areas="E7", specialties=["Electrical"])
        make_user("optedout", role="tradesperson", service_areas="E7", specialties=["Plumbing"], new_job_alerts=False)
        make_user("notrade", role="customer", service_areas="E7", specialties=["Plumbing"])

        matches = find_matching_tradespeople(self.job)

        self.assertEqual([profile.user_id for profile in matches.business], [business.id])
        self.assertEqual([profile.user_id for profile in matches.pro], [pro.id])
        self.assertEqual([profile.user_id for profile in matches.basic], [basic.id])

    def test_region_phrase_only_applies_inside_the_metro(self):
        make_user("eastie", role="tradesperson", service_areas="east", specialties=["Plumbing"])
        self.job.town = "Ilford"
        self.job.city_slug = "ilford"
        self.job.save()

        matches = find_matching_tradespeople(self.job)

        self.assertEqual(matches.basic, [])

    def test_missing_postcode_or_service_type_matches_nobody(self):
        make_user("any", role="tradesperson", service_areas="E7 London", specialties=["Plumbing"])
        self.job.postcode = ""
        self.assertEqual(find_matching_tradespeople(self.job), ([], [], []))
        self.job.postcode = "E7 9JH"
        self.job.service_type = ""
        self.assertEqual(find_matching_tradespeople(self.job), ([], [], []))


class DispatchJobAlertsTests(TestCase):
    def setUp(self):
        self.customer = make_user("customer")
        self.job = Job.objects.create(
            customer=self.customer,
            title="Boiler service",
            service_type="Boiler",
            postcode="SW2 1AA",
            town="London",
            city_slug="london",
        )

    def test_every_match_is_notified_and_emailed_when_address_present(self):
        with_email = make_user("mailme", role="tradesperson", service_areas="SW2", specialties=["Boiler"])
        without_email = make_user("nomail", role="tradesperson", tier="pro", email="", service_areas="SW2", specialties=["Boiler"])
        notifier, mailer = RecordingNotifier(), RecordingMailer()

        sent = dispatch_job_alerts(self.job, find_matching_tradespeople(self.job), notifier, mailer)

        self.assertEqual(sent, 1)
        self.assertEqual(notifier.kinds_for(with_email.id), ["new_job"])
        self.assertEqual(notifier.kinds_for(without_email.id), ["new_job"])
        self.assertIn('"Boiler service"', notifier.sent[0]["message"])
        self.assertEqual(mailer.recipients("new_job_alert"), ["mailme@example.com"])

    def test_one_failing_recipient_does_not_stop_the_rest(self):
        make_user("one", role="tradesperson", service_areas="SW2", specialties=["Boiler"])
        make_user("two", role="tradesperson", service_areas="SW2", specialties=["Boiler"])
        notifier = RecordingNotifier(fail=True)
        mailer = RecordingMailer()

        with self.assertLogs("marketplace.exceptions", level="ERROR"):
            sent = dispatch_job_alerts(self.job, find_matching_tradespeople(self.job), notifier, mailer)

        self.assertEqual(sent, 2)
