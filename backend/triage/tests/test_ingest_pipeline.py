from datetime import timedelta
from unittest.mock import patch

from django.test import TestCase

from triage.models import Event, Message, Observation, Thread, ThreadState
from triage.services import macros
from triage.services.agent_settings import update_agent_settings
from triage.services.archive import archive_thread
from triage.services.ingest_pipeline import IngestRequest, process_ingest_request
from triage.services.intervention import admin_takeover_signal
from triage.services.observation import enter_observation_mode
from triage.services.pending_actions import AWAITING_ADMIN_DECISION, get_pending_action
from triage.services.run_guard import claim_thread_run, release_thread_run
from triage.services.taxonomy import (
    ASK_CLARIFYING_QUESTIONS,
    ESCALATE_WITH_DRAFT,
    NO_REPLY,
    SEND_PREAPPROVED_MACRO,
)
from triage.tests.fakes import FakeClassifier, FakeDrafter, FakeVerifier, SIGNED_DRAFT, make_collaborators
from triage.utils import utcnow

REFUND_PROMISE_DRAFT = (
    "Hey,\n\n"
    "Good news, we will refund your order once it's back with us.\n\n"
    "– Lina"
)


def inbound(body, external_id="gmail-thread-1", message_id=None, subject="Help", **extra) -> IngestRequest:
    return IngestRequest(
        channel="email",
        external_id=external_id,
        subject=subject,
        body_text=body,
        from_identifier="jordan.miles@example.com",
        to_identifier="support@example.com",
        external_message_id=message_id,
        **extra,
    )


def active_draft(thread_id):
    return Message.objects.filter(thread_id=thread_id, role="draft").first()


class IngestScenarioTests(TestCase):
    def test_firmware_access_without_unit_asks_with_clarify_macro(self):
        collaborators = make_collaborators(classifier=FakeClassifier("FIRMWARE_ACCESS_ISSUE", 0.92))

        result = process_ingest_request(
            inbound("The firmware site keeps kicking me off when I log in.", message_id="m-1"),
            collaborators,
        )

        self.assertEqual(result.intent, "FIRMWARE_ACCESS_ISSUE")
        self.assertEqual(result.action, ASK_CLARIFYING_QUESTIONS)
        self.assertEqual(result.previous_state, ThreadState.NEW)
        self.assertEqual(result.state, ThreadState.AWAITING_INFO)
        self.assertEqual(result.missing_info, ["unit_type"])
        self.assertEqual(result.draft, macros.firmware_access_clarify())
        self.assertEqual(active_draft(result.thread_id).body, result.draft)
        # the macro answers it, the drafter is not needed
        self.assertEqual(collaborators.drafter.requests, [])

    def test_docs_video_mismatch_sends_macro(self):
        collaborators = make_collaborators(classifier=FakeClassifier("DOCS_VIDEO_MISMATCH", 0.9))

        result = process_ingest_request(
            inbound("I watched the video but didn't get the email it shows.", message_id="m-1"),
            collaborators,
        )

        self.assertEqual(result.action, SEND_PREAPPROVED_MACRO)
        self.assertEqual(result.state, ThreadState.IN_PROGRESS)
        self.assertEqual(result.draft, macros.docs_video_mismatch())
        self.assertFalse(result.auto_sent)

    def test_refund_without_order_number_awaits_info(self):
        collaborators = make_collaborators(
            classifier=FakeClassifier("RETURN_REFUND_REQUEST", 0.88),
            verifier=FakeVerifier("pending"),
        )

        result = process_ingest_request(
            inbound("I want a refund, the unit is defective.", message_id="m-1"),
            collaborators,
        )

        self.assertEqual(result.action, ASK_CLARIFYING_QUESTIONS)
        self.assertEqual(result.state, ThreadState.AWAITING_INFO)
        self.assertIn("order_number", result.missing_info)
        self.assertIn("1) Order number", result.draft)
        thread = Thread.objects.get(id=result.thread_id)
        self.assertIn("Order number", thread.status_reason)

    def test_customer_reply_with_order_number_moves_on(self):
        collaborators = make_collaborators(classifier=FakeClassifier("RETURN_REFUND_REQUEST", 0.88))
        process_ingest_request(inbound("I want a refund, the unit is defective.", message_id="m-1"), collaborators)

        result = process_ingest_request(inbound("Sure, it's order #48213.", message_id="m-2"), collaborators)

        self.assertEqual(result.previous_state, ThreadState.AWAITING_INFO)
        self.assertEqual(result.state, ThreadState.IN_PROGRESS)
        self.assertEqual(result.missing_info, [])
        self.assertEqual(result.draft, SIGNED_DRAFT)
        # history carries the first message to the classifier
        self.assertEqual(len(collaborators.classifier.calls[1]["history"]), 1)

    def test_thank_you_resolves_without_draft(self):
        result = process_ingest_request(
            inbound("That fixed it, thank you!", message_id="m-1"),
            make_collaborators(classifier=FakeClassifier("THANK_YOU_CLOSE", 0.95)),
        )

        self.assertEqual(result.action, NO_REPLY)
        self.assertEqual(result.state, ThreadState.RESOLVED)
        self.assertIsNone(result.draft)
        self.assertIsNone(active_draft(result.thread_id))

    def test_vendor_spam_gets_no_reply(self):
        result = process_ingest_request(
            inbound("We offer SEO services for your store.", message_id="m-1"),
            make_collaborators(classifier=FakeClassifier("VENDOR_SPAM", 0.85)),
        )
        self.assertEqual(result.action, NO_REPLY)
        self.assertEqual(result.state, ThreadState.RESOLVED)
        self.assertIsNone(active_draft(result.thread_id))
        thread = Thread.objects.get(id=result.thread_id)
        self.assertEqual(thread.status_reason, "Auto-closed: VENDOR_SPAM is not a customer conversation")

    def test_chargeback_escalates_with_holding_reply(self):
        result = process_ingest_request(
            inbound("I'm filing a chargeback with my bank.", message_id="m-1"),
            make_collaborators(classifier=FakeClassifier("CHARGEBACK_THREAT", 0.93)),
        )

        self.assertEqual(result.action, ESCALATE_WITH_DRAFT)
        self.assertEqual(result.state, ThreadState.ESCALATED)
        self.assertEqual(result.draft, macros.escalation_holding_reply())
        pending = get_pending_action(result.thread_id)
        self.assertEqual(pending.type, AWAITING_ADMIN_DECISION)

    def test_flagged_verification_escalates(self):
        result = process_ingest_request(
            inbound("Where is order #48213?", message_id="m-1"),
            make_collaborators(
                classifier=FakeClassifier("ORDER_STATUS", 0.9),
                verifier=FakeVerifier("flagged", flags=["high_risk"]),
            ),
        )
        self.assertEqual(result.action, ESCALATE_WITH_DRAFT)
        self.assertEqual(result.state, ThreadState.ESCALATED)


class PolicyGateInPipelineTests(TestCase):
    def test_refund_promise_is_blocked_and_escalated_with_draft_kept(self):
        collaborators = make_collaborators(
            classifier=FakeClassifier("RETURN_REFUND_REQUEST", 0.9),
            drafter=FakeDrafter(REFUND_PROMISE_DRAFT),
        )

        result = process_ingest_request(inbound("Refund for order #48213 please.", message_id="m-1"), collaborators)

        self.assertEqual(result.action, ESCALATE_WITH_DRAFT)
        self.assertEqual(result.state, ThreadState.ESCALATED)
        self.assertTrue(any("refund" in r for r in result.policy_reasons))
        self.assertEqual(active_draft(result.thread_id).body, REFUND_PROMISE_DRAFT)

        thread = Thread.objects.get(id=result.thread_id)
        self.assertTrue(thread.status_reason.startswith("Draft blocked by policy gate"))
        pending = get_pending_action(thread.id)
        self.assertEqual(pending.type, AWAITING_ADMIN_DECISION)
        self.assertTrue(pending.metadata["reasons"])

    def test_approved_refund_commitment_passes(self):
        Thread.objects.create(external_id="gmail-thread-1", approved_commitments=["refund"])
        collaborators = make_collaborators(
            classifier=FakeClassifier("RETURN_REFUND_REQUEST", 0.9),
            drafter=FakeDrafter(REFUND_PROMISE_DRAFT),
        )

        result = process_ingest_request(inbound("Refund for order #48213 please.", message_id="m-1"), collaborators)

        self.assertEqual(result.action, ASK_CLARIFYING_QUESTIONS)
        self.assertEqual(result.state, ThreadState.IN_PROGRESS)
        self.assertTrue(Event.objects.filter(thread_id=result.thread_id, event_type="promise_detected").exists())


class CollaboratorFailureTests(TestCase):
    def test_classifier_failure_falls_back_to_unknown(self):
        collaborators = make_collaborators(classifier=FakeClassifier(ok=False, error="timeout after 15s"))

        result = process_ingest_request(inbound("Something is off with my dash.", message_id="m-1"), collaborators)

        self.assertEqual(result.intent, "UNKNOWN")
        self.assertEqual(result.confidence, 0.0)
        self.assertIn("classification_failed", result.steps)
        event = Event.objects.get(thread_id=result.thread_id, event_type="auto_triage")
        self.assertFalse(event.payload["classification"]["ok"])
        self.assertEqual(event.payload["classification"]["error"], "timeout after 15s")

    def test_drafter_failure_leaves_no_draft_and_records_error(self):
        collaborators = make_collaborators(
            classifier=FakeClassifier("INSTALL_GUIDANCE", 0.9),
            drafter=FakeDrafter(success=False, error="rate limited"),
        )

        result = process_ingest_request(inbound("How do I install the harness?", message_id="m-1"), collaborators)

        self.assertEqual(result.action, ASK_CLARIFYING_QUESTIONS)
        self.assertIsNone(result.draft)
        self.assertIsNone(active_draft(result.thread_id))
        event = Event.objects.get(thread_id=result.thread_id, event_type="auto_triage")
        self.assertEqual(event.payload["drafting_error"], "rate limited")

    def test_drafter_receives_kb_results_and_history(self):
        docs = [{"id": "kb-1", "title": "Installation guides by unit", "body": "Apex plugs in.", "score": 3}]
        collaborators = make_collaborators(classifier=FakeClassifier("INSTALL_GUIDANCE", 0.9))
        collaborators.knowledge_search.docs = docs

        process_ingest_request(inbound("How do I install the harness?", message_id="m-1"), collaborators)

        request = collaborators.drafter.requests[0]
        self.assertEqual(request.kb_docs, docs)
        self.assertEqual(request.intent, "INSTALL_GUIDANCE")


class IdempotenceAndGatingTests(TestCase):
    def test_redelivered_message_is_a_no_op(self):
        collaborators = make_collaborators(classifier=FakeClassifier("INSTALL_GUIDANCE", 0.9))
        first = process_ingest_request(inbound("How do I install it?", message_id="m-1"), collaborators)
        messages = Message.objects.count()
        events = Event.objects.count()

        second = process_ingest_request(inbound("How do I install it?", message_id="m-1"), collaborators)

        self.assertTrue(second.duplicate)
        self.assertEqual(second.thread_id, first.thread_id)
        self.assertEqual(Message.objects.count(), messages)
        self.assertEqual(Event.objects.count(), events)
        self.assertEqual(len(collaborators.classifier.calls), 1)

    def test_human_handling_records_observation_and_skips_automation(self):
        thread = Thread.objects.create(external_id="gmail-thread-1", customer_identifier="jordan.miles@example.com")
        with patch("django_q.tasks.async_task"):
            enter_observation_mode(admin_takeover_signal(thread.id, "alex@example.com"))
        collaborators = make_collaborators(classifier=FakeClassifier("INSTALL_GUIDANCE", 0.9))

        result = process_ingest_request(inbound("Any news on this?", message_id="m-1"), collaborators)

        self.assertEqual(result.skipped_reason, "human_handling")
        self.assertEqual(collaborators.classifier.calls, [])
        thread.refresh_from_db()
        self.assertEqual(thread.state, ThreadState.HUMAN_HANDLING)
        observation = Observation.objects.get(thread=thread)
        self.assertEqual(observation.observed_messages[-1]["content"], "Any news on this?")
        self.assertTrue(Event.objects.filter(thread=thread, event_type="observation_recorded").exists())
        self.assertFalse(Event.objects.filter(thread=thread, event_type="auto_triage").exists())

    def test_delivery_during_a_run_is_rejected_then_triaged_on_redelivery(self):
        thread = Thread.objects.create(external_id="gmail-thread-1")
        self.assertTrue(claim_thread_run(thread.id))
        collaborators = make_collaborators(classifier=FakeClassifier("CHARGEBACK_THREAT", 0.93))

        suppressed = process_ingest_request(inbound("I'm filing a chargeback.", message_id="m-2"), collaborators)

        self.assertEqual(suppressed.skipped_reason, "run_in_progress")
        self.assertTrue(suppressed.retryable)
        self.assertIsNone(suppressed.message_id)
        self.assertEqual(collaborators.classifier.calls, [])
        self.assertFalse(Message.objects.filter(external_message_id="m-2").exists())
        self.assertTrue(Event.objects.filter(thread=thread, event_type="run_suppressed").exists())

        release_thread_run(thread.id)
        redelivered = process_ingest_request(inbound("I'm filing a chargeback.", message_id="m-2"), collaborators)

        self.assertFalse(redelivered.duplicate)
        self.assertEqual(redelivered.action, ESCALATE_WITH_DRAFT)
        self.assertEqual(redelivered.state, ThreadState.ESCALATED)
        self.assertEqual(
            Event.objects.filter(
                thread=thread, event_type="auto_triage", payload__message_id=redelivered.message_id,
            ).count(),
            1,
        )

    def test_stale_claim_does_not_block(self):
        Thread.objects.create(external_id="gmail-thread-1", processing_started_at=utcnow() - timedelta(minutes=10))
        collaborators = make_collaborators(classifier=FakeClassifier("INSTALL_GUIDANCE", 0.9))

        result = process_ingest_request(inbound("How do I install it?", message_id="m-1"), collaborators)

        self.assertIsNone(result.skipped_reason)
        thread = Thread.objects.get(id=result.thread_id)
        self.assertIsNone(thread.processing_started_at)

    def test_inbound_message_unarchives_thread(self):
        thread = Thread.objects.create(external_id="gmail-thread-1")
        archive_thread(thread, "ops@example.com")

        process_ingest_request(
            inbound("Back again, how do I install it?", message_id="m-1"),
            make_collaborators(classifier=FakeClassifier("INSTALL_GUIDANCE", 0.9)),
        )

        thread.refresh_from_db()
        self.assertFalse(thread.is_archived)
        self.assertTrue(Event.objects.filter(thread=thread, event_type="thread_unarchived").exists())

    def test_unknown_channel_rejected(self):
        with self.assertRaises(ValueError):
            process_ingest_request(
                IngestRequest(channel="fax", body_text="hello"),
                make_collaborators(),
            )


class AutoSendTests(TestCase):
    def test_eligible_macro_is_sent(self):
        update_agent_settings({"auto_send_enabled": True})
        collaborators = make_collaborators(classifier=FakeClassifier("DOCS_VIDEO_MISMATCH", 0.95))

        result = process_ingest_request(inbound("I watched the video, no email.", message_id="m-1"), collaborators)

        self.assertTrue(result.auto_sent)
        self.assertEqual(collaborators.messaging.sent[0]["key"], "reply:m-1")
        self.assertIsNone(active_draft(result.thread_id))
        sent = Message.objects.get(thread_id=result.thread_id, direction="outbound", role="message")
        self.assertTrue(sent.sent_by_agent)
        self.assertEqual(sent.external_message_id, "fake-sent-1")
        self.assertTrue(Event.objects.filter(thread_id=result.thread_id, event_type="draft_sent").exists())

    def test_order_intent_never_auto_sends_unverified(self):
        update_agent_settings({"auto_send_enabled": True, "auto_send_order_confidence_threshold": 0.5})
        collaborators = make_collaborators(classifier=FakeClassifier("ORDER_STATUS", 0.99))

        result = process_ingest_request(inbound("Where is order #48213?", message_id="m-1"), collaborators)

        self.assertFalse(result.auto_sent)
        self.assertEqual(collaborators.messaging.sent, [])
        event = Event.objects.get(thread_id=result.thread_id, event_type="auto_triage")
        self.assertFalse(event.payload["auto_send"]["eligible"])
        self.assertIsNotNone(active_draft(result.thread_id))

    def test_disabled_by_default(self):
        collaborators = make_collaborators(classifier=FakeClassifier("DOCS_VIDEO_MISMATCH", 0.99))

        result = process_ingest_request(inbound("I watched the video, no email.", message_id="m-1"), collaborators)

        self.assertFalse(result.auto_sent)
        self.assertEqual(collaborators.messaging.sent, [])
