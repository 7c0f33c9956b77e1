from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from marketplace.crm import CustomerRelationshipSync, sync_business_customer_from_job
from marketplace.exceptions import NotAuthorized, NotFound
from marketplace.models import BusinessCustomer, CustomerInteraction, Job

from .support import make_user


class CustomerRelationshipSyncTests(TestCase):
    def setUp(self):
        self.crm = CustomerRelationshipSync()
        self.owner = make_user("acme", role="tradesperson", tier="business")

    def test_customer_is_found_by_email_then_phone(self):
        created = self.crm.find_or_create_customer(self.owner.id, {"name": "Sam", "email": "sam@example.com"})
        by_email = self.crm.find_or_create_customer(self.owner.id, {"email": "sam@example.com", "phone": "0770"})
        by_phone = self.crm.find_or_create_customer(self.owner.id, {"name": "Samuel", "phone": "0770"})

        self.assertEqual(created.id, by_email.id)
        self.assertEqual(created.id, by_phone.id)
        created.refresh_from_db()
        self.assertEqual(created.phone, "0770")
        self.assertEqual(created.name, "Sam")
        self.assertEqual(BusinessCustomer.objects.count(), 1)

    def test_customers_are_scoped_to_their_owner(self):
        other_owner = make_user("rival", role="tradesperson", tier="business")
        mine = self.crm.find_or_create_customer(self.owner.id, {"email": "sam@example.com"})
        theirs = self.crm.find_or_create_customer(other_owner.id, {"email": "sam@example.com"})
        self.assertNotEqual(mine.id, theirs.id)
        self.assertEqual(mine.name, "Customer")

    def test_interactions_update_running_totals(self):
        customer = self.crm.find_or_create_customer(self.owner.id, {"name": "Sam"})
        job = Job.objects.create(customer=make_user("sam"), title="Boiler")
        when = timezone.now()

        self.crm.record_interaction(self.owner.id, customer.id, note="Serviced", created_by="Acme", job_id=job.id, amount=120.5, follow_up_date=when)
        self.crm.record_interaction(self.owner.id, customer.id, note="Called back", created_by="Acme")

        customer.refresh_from_db()
        self.assertEqual(customer.total_jobs, 1)
        self.assertEqual(customer.total_spend, Decimal("120.50"))
        self.assertEqual(customer.last_service_date, when)
        self.assertEqual(CustomerInteraction.objects.filter(customer=customer).count(), 2)

    def test_interaction_ownership_is_enforced(self):
        customer = self.crm.find_or_create_customer(self.owner.id, {"name": "Sam"})
        with self.assertRaises(NotAuthorized):
            self.crm.record_interaction(make_user("rival").id, customer.id, note="x", created_by="x")
        with self.assertRaises(NotFound):
            self.crm.record_interaction(self.owner.id, 99999, note="x", created_by="x")


class SyncFromJobTests(TestCase):
    def setUp(self):
        self.crm = CustomerRelationshipSync()
        self.customer = make_user("customer")
        self.job = Job.objects.create(customer=self.customer, title="Loft insulation")

    def test_non_business_tiers_are_skipped(self):
        pro = make_user("pro", role="tradesperson", tier="pro")
        self.assertIsNone(sync_business_customer_from_job(self.crm, self.job, pro, event="accepted"))
        self.assertFalse(BusinessCustomer.objects.exists())

    def test_completion_without_payments_records_no_amount(self):
        business = make_user("acme", role="tradesperson", tier="business", display_name="")
        record = sync_business_customer_from_job(self.crm, self.job, business, event="completed")

        interaction = CustomerInteraction.objects.get(customer=record)
        self.assertIsNone(interaction.amount)
        self.assertEqual(interaction.created_by, "Acme")
        self.assertEqual(record.email, "customer@example.com")
