import uuid
from unittest.mock import patch

from django.test import TestCase
from rest_framework.test import APIClient

from triage.models import Message, Thread, ThreadState
from triage.services.intervention import admin_takeover_signal
from triage.services.learning import generate_learning_proposals
from triage.services.observation import ObservationResolution, enter_observation_mode, exit_observation_mode
from triage.utils import utcnow

BLOCKED_DRAFT = "Hey,\n\nWe will refund your order.\n\n– Lina"
CLEAN_DRAFT = "Hey,\n\nCould you send a photo of the label?\n\n– Lina"


class IngestApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.payload = {
            "channel": "email",
            "external_id": "gmail-thread-1",
            "subject": "Firmware site",
            "body_text": "The firmware site keeps kicking me off every time I log in.",
            "from_identifier": "jordan.miles@example.com",
            "to_identifier": "support@example.com",
            "external_message_id": "m-1",
        }

    def test_ingest_returns_decision(self):
        response = self.client.post("/api/ingest/", self.payload, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["intent"], "FIRMWARE_ACCESS_ISSUE")
        self.assertEqual(response.data["state"], ThreadState.AWAITING_INFO)
        self.assertFalse(response.data["duplicate"])
        self.assertTrue(Thread.objects.filter(external_id="gmail-thread-1").exists())

    def test_redelivery_returns_200(self):
        self.client.post("/api/ingest/", self.payload, format="json")
        response = self.client.post("/api/ingest/", self.payload, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["duplicate"])
        self.assertEqual(Message.objects.filter(role="message").count(), 1)

    def test_unknown_channel_is_400(self):
        response = self.client.post("/api/ingest/", {**self.payload, "channel": "fax"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_blank_ids_stored_as_null(self):
        response = self.client.post(
            "/api/ingest/", {**self.payload, "external_message_id": ""}, format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertIsNone(Message.objects.get(id=response.data["message_id"]).external_message_id)

    def test_delivery_during_a_run_is_409_and_not_stored(self):
        Thread.objects.create(external_id="gmail-thread-1", processing_started_at=utcnow())

        response = self.client.post("/api/ingest/", self.payload, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertTrue(response.data["retryable"])
        self.assertFalse(Message.objects.filter(external_message_id="m-1").exists())

    @patch("triage.api.ingest.process_ingest_request", side_effect=RuntimeError("database is locked"))
    def test_processing_failure_is_500(self, process):
        response = self.client.post("/api/ingest/", self.payload, format="json")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["detail"], "Processing failed: database is locked")


@patch("django_q.tasks.async_task")
class TakeoverApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.thread = Thread.objects.create(
            external_id="gmail-thread-1", subject="Will this fit?", customer_identifier="drew.parker@example.com",
        )

    def test_takeover_and_return(self, async_task):
        response = self.client.post(
            f"/api/threads/{self.thread.id}/takeover", {"handler": "alex@example.com"}, format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.data["is_active"])

        human = self.client.get("/api/threads/", {"category": "human"})
        self.assertEqual([t["id"] for t in human.data], [str(self.thread.id)])

        response = self.client.post(
            f"/api/threads/{self.thread.id}/return",
            {"resolution_type": "resolved", "resolution_summary": "Fits with the adapter"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["thread"]["state"], ThreadState.RESOLVED)
        self.assertFalse(response.data["observation"]["is_active"])
        async_task.assert_called_once()

    def test_second_takeover_conflicts(self, async_task):
        url = f"/api/threads/{self.thread.id}/takeover"
        self.client.post(url, {"handler": "alex@example.com"}, format="json")
        response = self.client.post(url, {"handler": "sam@example.com"}, format="json")
        self.assertEqual(response.status_code, 409)

    def test_takeover_unknown_thread(self, async_task):
        response = self.client.post(f"/api/threads/{uuid.uuid4()}/takeover", {"handler": "alex@example.com"}, format="json")
        self.assertEqual(response.status_code, 404)

    def test_return_without_takeover_conflicts(self, async_task):
        response = self.client.post(
            f"/api/threads/{self.thread.id}/return", {"resolution_type": "resolved"}, format="json",
        )
        self.assertEqual(response.status_code, 409)

    def test_manual_move_into_human_handling_rejected(self, async_task):
        response = self.client.patch(
            f"/api/threads/{self.thread.id}",
            {"state": ThreadState.HUMAN_HANDLING, "actor": "ops@example.com"},
            format="json",
        )
        self.assertEqual(response.status_code, 409)

    def test_outbound_from_teammate_takes_over(self, async_task):
        response = self.client.post(
            f"/api/threads/{self.thread.id}/outbound",
            {"from_identifier": "alex@example.com", "body": "On it.", "cc": ["support@example.com"]},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["signal_type"], "cc_support")


class ThreadAdminApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.thread = Thread.objects.create(
            external_id="gmail-thread-1", subject="Refund", customer_identifier="casey.nguyen@example.com",
        )
        self.base = f"/api/threads/{self.thread.id}"

    def test_detail(self):
        response = self.client.get(self.base)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["thread"]["state"], ThreadState.NEW)
        self.assertIsNone(response.data["draft"])
        self.assertNotIn("processing_started_at", response.data["thread"])

    def test_state_change(self):
        response = self.client.patch(self.base, {"state": "RESOLVED", "actor": "ops@example.com"}, format="json")
        self.assertEqual(response.status_code, 200)

        response = self.client.patch(self.base, {"state": "AWAITING_INFO", "actor": "ops@example.com"}, format="json")
        self.assertEqual(response.status_code, 409)

    def test_pending_action_validation(self):
        url = f"{self.base}/pending-action"
        response = self.client.put(
            url, {"type": "awaiting_vendor_response", "description": "Waiting on Holley"}, format="json",
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.put(
            url,
            {"type": "awaiting_vendor_response", "description": "Waiting on Holley", "metadata": {"vendor_name": "Holley"}},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(url).data["pending_action"]["waiting_for"], "vendor")

        waiting = self.client.get("/api/threads/", {"category": "waiting"})
        self.assertEqual(len(waiting.data), 1)

        self.assertTrue(self.client.delete(url).data["cleared"])

    def test_blocked_draft_escalates_and_cannot_be_sent(self):
        response = self.client.put(f"{self.base}/draft", {"body": BLOCKED_DRAFT, "author": "ops@example.com"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data["policy"]["ok"])
        self.thread.refresh_from_db()
        self.assertEqual(self.thread.state, ThreadState.ESCALATED)

        response = self.client.post(f"{self.base}/send-draft", {"sent_by": "ops@example.com"}, format="json")
        self.assertEqual(response.status_code, 409)

    def test_approved_commitment_unblocks_send(self):
        self.client.put(f"{self.base}/draft", {"body": BLOCKED_DRAFT, "author": "ops@example.com"}, format="json")
        response = self.client.post(
            f"{self.base}/approve-commitment", {"category": "refund", "actor": "ops@example.com"}, format="json",
        )
        self.assertEqual(response.data["approved_commitments"], ["refund"])

        response = self.client.post(f"{self.base}/send-draft", {"sent_by": "ops@example.com"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["sent"])

    def test_send_clean_draft(self):
        self.client.put(f"{self.base}/draft", {"body": CLEAN_DRAFT, "author": "ops@example.com"}, format="json")

        response = self.client.post(f"{self.base}/send-draft", {"sent_by": "ops@example.com"}, format="json")

        self.assertEqual(response.status_code, 200)
        sent = Message.objects.get(id=response.data["message_id"])
        self.assertEqual(sent.role, "message")
        self.assertTrue(sent.external_message_id.startswith("local-"))

    def test_send_without_draft_is_400(self):
        response = self.client.post(f"{self.base}/send-draft", {"sent_by": "ops@example.com"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_archive_roundtrip(self):
        self.client.post(f"{self.base}/archive", {"actor": "ops@example.com"}, format="json")
        self.assertEqual(len(self.client.get("/api/threads/").data), 0)
        self.assertEqual(len(self.client.get("/api/threads/", {"category": "archive"}).data), 1)

        response = self.client.post(f"{self.base}/unarchive", {"actor": "ops@example.com"}, format="json")
        self.assertFalse(response.data["is_archived"])


class LearningApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        thread = Thread.objects.create(external_id="gmail-thread-1", subject="Will this fit?")
        enter_observation_mode(admin_takeover_signal(thread.id, "alex@example.com"))
        with patch("django_q.tasks.async_task"):
            observation = exit_observation_mode(thread.id, ObservationResolution(
                "resolved", new_information=["Premium audio needs the bypass module"],
            ))
        self.proposal = generate_learning_proposals(observation.id)[0]

    def test_list_and_review(self):
        listed = self.client.get("/api/learning/proposals")
        self.assertEqual([p["id"] for p in listed.data], [str(self.proposal.id)])

        url = f"/api/learning/proposals/{self.proposal.id}/approve"
        response = self.client.post(url, {"reviewer": "ops@example.com"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], "published")
        self.assertEqual(self.client.get("/api/learning/proposals", {"status": "approved"}).data, [])
        self.assertEqual(len(self.client.get("/api/learning/proposals", {"status": "published"}).data), 1)

        response = self.client.post(url, {"reviewer": "ops@example.com"}, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(self.client.get("/api/learning/proposals").data, [])

    def test_unknown_proposal(self):
        response = self.client.post(
            f"/api/learning/proposals/{uuid.uuid4()}/reject", {"reviewer": "ops@example.com", "reason": "no"}, format="json",
        )
        self.assertEqual(response.status_code, 404)

    def test_unknown_status_filter(self):
        self.assertEqual(self.client.get("/api/learning/proposals", {"status": "maybe"}).status_code, 400)


class AgentSettingsApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_update_and_read(self):
        response = self.client.put(
            "/api/settings/agent",
            {"auto_send_enabled": True, "auto_send_intent_thresholds": {"DOCS_VIDEO_MISMATCH": 0.7}, "updated_by": "ops@example.com"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)

        settings = self.client.get("/api/settings/agent").data
        self.assertTrue(settings["auto_send_enabled"])
        self.assertEqual(settings["intent_thresholds"], {"DOCS_VIDEO_MISMATCH": 0.7})

    def test_empty_update_rejected(self):
        response = self.client.put("/api/settings/agent", {"updated_by": "ops@example.com"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_threshold_out_of_range(self):
        response = self.client.put("/api/settings/agent", {"auto_send_confidence_threshold": 1.5}, format="json")
        self.assertEqual(response.status_code, 400)


class HealthCheckTests(TestCase):
    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "healthy"})
