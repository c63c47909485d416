from unittest.mock import patch

from django.test import SimpleTestCase, TestCase

from triage.exceptions import InvalidStateTransition
from triage.models import AgentInstruction, Event, KBArticle, LearningProposal, Thread
from triage.providers.summarizer import SummaryResult
from triage.services.intervention import admin_takeover_signal
from triage.services.learning import (
    approve_proposal,
    generate_learning_proposals,
    get_pending_proposals,
    redact_pii,
    reject_proposal,
)
from triage.services.observation import ObservationResolution, enter_observation_mode, exit_observation_mode


class FailingSummarizer:
    def propose(self, context):
        return SummaryResult(ok=False, error="model overloaded")


class RecordingSummarizer:
    def __init__(self, proposals):
        self.proposals = proposals
        self.contexts = []

    def propose(self, context):
        self.contexts.append(context)
        return SummaryResult(ok=True, proposals=self.proposals, summary="Handled by phone at 555-867-5309")


class RedactionTests(SimpleTestCase):
    def test_redacts_each_kind(self):
        text = (
            "Email jordan.miles@example.com or call 555-867-5309 about order #48213, "
            "card 4111 1111 1111 1111, ship to 42 Elm Street, ref 1234567."
        )
        redacted = redact_pii(text)

        for placeholder in ("[EMAIL]", "[PHONE]", "[ORDER]", "[CARD]", "[ADDRESS]", "[NUMBER]"):
            self.assertIn(placeholder, redacted)
        for leaked in ("jordan.miles", "867", "48213", "4111", "Elm Street", "1234567"):
            self.assertNotIn(leaked, redacted)

    def test_email_digits_are_not_mistaken_for_phone(self):
        self.assertEqual(redact_pii("mail 5558675309@example.com"), "mail [EMAIL]")

    def test_plain_text_untouched(self):
        self.assertEqual(redact_pii("Needs the amp bypass module"), "Needs the amp bypass module")
        self.assertEqual(redact_pii(None), "")


@patch("django_q.tasks.async_task")
class LearningProposalTests(TestCase):
    def setUp(self):
        self.thread = Thread.objects.create(
            external_id="gmail-thread-1",
            subject="Will this fit my truck?",
            customer_identifier="drew.parker@example.com",
            last_intent="COMPATIBILITY_QUESTION",
        )

    def _closed_observation(self):
        enter_observation_mode(admin_takeover_signal(self.thread.id, "alex@example.com"))
        return exit_observation_mode(self.thread.id, ObservationResolution(
            resolution_type="resolved",
            resolution_summary="Confirmed fitment for drew.parker@example.com",
            questions_asked=["Does the truck have the premium audio amp?"],
            troubleshooting_steps=["Check trim level"],
            new_information=["Premium audio F-150s need the bypass module, order #48213 had one"],
        ))

    def test_generates_redacted_pending_proposals(self, async_task):
        observation = self._closed_observation()

        proposals = generate_learning_proposals(observation.id)

        self.assertEqual(
            sorted(p.proposal_type for p in proposals), ["instruction_update", "kb_article"],
        )
        for proposal in proposals:
            self.assertEqual(proposal.status, "pending")
            self.assertNotIn("48213", proposal.proposed_content)
            self.assertNotIn("drew.parker", proposal.proposed_content)
        kb = next(p for p in proposals if p.proposal_type == "kb_article")
        self.assertIn("[ORDER]", kb.proposed_content)

        observation.refresh_from_db()
        self.assertIsNotNone(observation.learning_generated_at)
        self.assertTrue(Event.objects.filter(thread=self.thread, event_type="learning_proposals_created").exists())

    def test_summarizer_sees_only_redacted_context_and_output_is_redacted(self, async_task):
        observation = self._closed_observation()
        summarizer = RecordingSummarizer([{
            "type": "kb_article",
            "title": "Call 555-867-5309 for fitment",
            "proposed_content": "Customer drew.parker@example.com needed the module.",
        }])

        proposals = generate_learning_proposals(observation.id, summarizer=summarizer)

        context = summarizer.contexts[0]
        self.assertNotIn("drew.parker", context["resolution_summary"])
        self.assertEqual(proposals[0].title, "Call [PHONE] for fitment")
        self.assertEqual(proposals[0].proposed_content, "Customer [EMAIL] needed the module.")
        observation.refresh_from_db()
        self.assertEqual(observation.learning_summary, "Handled by phone at [PHONE]")

    def test_malformed_proposals_are_dropped(self, async_task):
        observation = self._closed_observation()
        summarizer = RecordingSummarizer([
            {"type": "poem", "title": "x", "proposed_content": "y"},
            {"type": "kb_article", "title": "", "proposed_content": "y"},
            {"type": "instruction_update", "title": "Ask about the amp", "proposed_content": "Ask first."},
        ])

        proposals = generate_learning_proposals(observation.id, summarizer=summarizer)

        self.assertEqual([p.title for p in proposals], ["Ask about the amp"])

    def test_second_run_creates_nothing_new(self, async_task):
        observation = self._closed_observation()
        first = generate_learning_proposals(observation.id)

        second = generate_learning_proposals(observation.id)

        self.assertEqual({p.id for p in first}, {p.id for p in second})
        self.assertEqual(LearningProposal.objects.count(), len(first))

    def test_summarizer_failure_creates_nothing_and_stays_retryable(self, async_task):
        observation = self._closed_observation()

        self.assertEqual(generate_learning_proposals(observation.id, summarizer=FailingSummarizer()), [])

        observation.refresh_from_db()
        self.assertIsNone(observation.learning_generated_at)
        self.assertEqual(len(generate_learning_proposals(observation.id)), 2)

    def test_active_observation_rejected(self, async_task):
        observation = enter_observation_mode(admin_takeover_signal(self.thread.id, "alex@example.com"))
        with self.assertRaises(InvalidStateTransition):
            generate_learning_proposals(observation.id)

    def test_approving_kb_proposal_publishes_article(self, async_task):
        proposals = generate_learning_proposals(self._closed_observation().id)
        kb = next(p for p in proposals if p.proposal_type == "kb_article")

        approved = approve_proposal(kb.id, "ops@example.com", edited_content="Premium audio needs the bypass module.")

        self.assertEqual(approved.status, "published")
        article = KBArticle.objects.get(id=approved.published_article_id)
        self.assertEqual(article.body, "Premium audio needs the bypass module.")
        self.assertEqual(article.intent_tags, ["COMPATIBILITY_QUESTION"])
        self.assertEqual(article.source, "learning")
        self.assertNotIn(kb.id, [p.id for p in get_pending_proposals()])

    def test_approving_instruction_proposal(self, async_task):
        proposals = generate_learning_proposals(self._closed_observation().id)
        instruction = next(p for p in proposals if p.proposal_type == "instruction_update")

        approve_proposal(instruction.id, "ops@example.com")

        self.assertTrue(AgentInstruction.objects.filter(source="learning", is_active=True).exists())

    def test_reviewed_proposal_cannot_be_reviewed_again(self, async_task):
        proposals = generate_learning_proposals(self._closed_observation().id)

        reject_proposal(proposals[0].id, "ops@example.com", "Too specific")
        with self.assertRaises(InvalidStateTransition):
            approve_proposal(proposals[0].id, "ops@example.com")
        with self.assertRaises(InvalidStateTransition):
            reject_proposal(proposals[0].id, "ops@example.com", "again")

        self.assertEqual(LearningProposal.objects.get(id=proposals[0].id).review_notes, "Too specific")
