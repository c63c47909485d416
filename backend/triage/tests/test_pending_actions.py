import uuid

from django.test import SimpleTestCase, TestCase

from triage.exceptions import InvalidPendingAction, ThreadNotFound
from triage.models import Event, Thread
from triage.services.pending_actions import (
    AWAITING_ADMIN_DECISION,
    AWAITING_CUSTOMER_PHOTOS,
    AWAITING_VENDOR_RESPONSE,
    PendingAction,
    admin_decision_action,
    clear_pending_action,
    customer_photos_action,
    get_pending_action,
    has_pending_action,
    set_pending_action,
    vendor_response_action,
)


class PendingActionValidationTests(SimpleTestCase):
    def test_factories_produce_valid_actions(self):
        for action in (
            vendor_response_action("Holley"),
            customer_photos_action("damage"),
            admin_decision_action("chargeback threat"),
        ):
            action.validate()

    def test_unknown_type_rejected(self):
        action = PendingAction(type="awaiting_miracle", description="x", waiting_for="admin")
        with self.assertRaises(InvalidPendingAction):
            action.validate()

    def test_waiting_for_must_match_type(self):
        action = PendingAction(
            type=AWAITING_VENDOR_RESPONSE, description="x", waiting_for="customer",
            metadata={"vendor_name": "Holley"},
        )
        with self.assertRaises(InvalidPendingAction):
            action.validate()

    def test_required_metadata_enforced(self):
        action = PendingAction(type=AWAITING_CUSTOMER_PHOTOS, description="x", waiting_for="customer")
        with self.assertRaisesMessage(InvalidPendingAction, "request_type"):
            action.validate()

    def test_from_dict_rejects_bad_created_at(self):
        payload = admin_decision_action("refund promise").to_dict()
        payload["created_at"] = "last tuesday"
        with self.assertRaises(InvalidPendingAction):
            PendingAction.from_dict(payload)

    def test_from_dict_fills_waiting_for_from_type(self):
        payload = admin_decision_action("refund promise").to_dict()
        del payload["waiting_for"]
        action = PendingAction.from_dict(payload)
        self.assertEqual(action.waiting_for, "admin")
        self.assertEqual(action.metadata["escalation_reason"], "refund promise")


class PendingActionPersistenceTests(TestCase):
    def setUp(self):
        self.thread = Thread.objects.create(external_id="gmail-thread-1")

    def test_set_get_and_clear(self):
        stored = set_pending_action(self.thread.id, vendor_response_action("Holley", ticket="HT-88"))

        action = get_pending_action(self.thread.id)
        self.assertEqual(action.type, AWAITING_VENDOR_RESPONSE)
        self.assertEqual(action.created_at, stored.created_at)
        self.assertEqual(action.metadata["ticket"], "HT-88")
        self.assertTrue(has_pending_action(self.thread.id))

        self.assertTrue(clear_pending_action(self.thread.id))
        self.assertIsNone(get_pending_action(self.thread.id))
        self.assertFalse(clear_pending_action(self.thread.id))

        event_types = list(Event.objects.filter(thread=self.thread).values_list("event_type", flat=True))
        self.assertEqual(event_types, ["pending_action_set", "pending_action_cleared"])

    def test_new_action_replaces_old(self):
        set_pending_action(self.thread.id, vendor_response_action("Holley"))
        set_pending_action(self.thread.id, admin_decision_action("customer asked for a manager"))
        self.assertEqual(get_pending_action(self.thread.id).type, AWAITING_ADMIN_DECISION)

    def test_invalid_action_never_stored(self):
        with self.assertRaises(InvalidPendingAction):
            set_pending_action(self.thread.id, PendingAction(type="bogus", description="x", waiting_for="admin"))
        self.thread.refresh_from_db()
        self.assertIsNone(self.thread.pending_action)

    def test_corrupt_stored_payload_rejected_on_read(self):
        Thread.objects.filter(id=self.thread.id).update(
            pending_action={"type": "bogus", "created_at": "2026-01-05T10:00:00+00:00"},
        )
        with self.assertRaises(InvalidPendingAction):
            get_pending_action(self.thread.id)

    def test_unknown_thread(self):
        with self.assertRaises(ThreadNotFound):
            set_pending_action(uuid.uuid4(), admin_decision_action("x"))
