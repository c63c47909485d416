from django.test import SimpleTestCase, override_settings

from triage.services import macros
from triage.services.policy_gate import detect_promised_actions, policy_gate


def signed(body: str) -> str:
    return f"Hey,\n\n{body}\n\n– Lina"


@override_settings(AGENT_SIGNOFF_NAME="Lina", POLICY_COMPETITOR_NAMES=[])
class PolicyGateTests(SimpleTestCase):
    def test_clean_signed_draft_passes(self):
        result = policy_gate(signed("Could you send a photo of the label on the unit?"))
        self.assertTrue(result.ok)
        self.assertEqual(result.reasons, [])

    def test_missing_signature_blocks(self):
        result = policy_gate("Hey,\n\nCould you send a photo?\n\nThanks")
        self.assertFalse(result.ok)
        self.assertIn("Draft must end with '– Lina' signature", result.reasons)

    def test_wrong_signoff_is_called_out(self):
        result = policy_gate("Hey,\n\nCould you send a photo?\n\n- Rob")
        self.assertFalse(result.ok)
        self.assertTrue(any("Disallowed sign-off" in r for r in result.reasons))

    def test_refund_promise_blocks_until_approved(self):
        draft = signed("Good news, we will refund your order once it's back with us.")
        blocked = policy_gate(draft)
        self.assertFalse(blocked.ok)
        self.assertTrue(any("Unapproved refund promise" in r for r in blocked.reasons))

        approved = policy_gate(draft, approved_commitments=["refund"])
        self.assertTrue(approved.ok)
        self.assertEqual([p.category for p in approved.promises], ["refund"])

    def test_replacement_and_timeline_promises_block(self):
        result = policy_gate(signed("We'll send you a new replacement within 3 business days."))
        categories = {p.category for p in result.promises}
        self.assertEqual(categories, {"replacement", "timeline"})
        self.assertFalse(result.ok)

    def test_follow_up_promise_is_recorded_but_allowed(self):
        result = policy_gate(signed("I'll check with the warehouse and get back to you."))
        self.assertTrue(result.ok)
        self.assertIn("follow_up", [p.category for p in result.promises])

    def test_banned_phrases(self):
        cases = {
            "We guarantee this will fix it.": "guarantee",
            "Use discount code SAVE now.": "unauthorized_discount",
            "Here's 20% off your next order.": "unauthorized_discount",
            "You could sue the shipper.": "legal_advice",
            "It will ship tomorrow.": "shipping_commitment",
        }
        for body, label in cases.items():
            result = policy_gate(signed(body))
            self.assertFalse(result.ok, body)
            self.assertTrue(any(f"({label})" in r for r in result.reasons), result.reasons)

    @override_settings(POLICY_COMPETITOR_NAMES=["Acme Audio"])
    def test_competitor_mentions_block(self):
        result = policy_gate(signed("Acme Audio sells a similar unit."))
        self.assertIn("Competitor mention: 'Acme Audio'", result.reasons)

    def test_every_macro_passes_the_gate(self):
        for render in (
            macros.docs_video_mismatch,
            macros.firmware_access_clarify,
            macros.order_verification_request,
            macros.escalation_holding_reply,
            macros.handoff_timeout_apology,
        ):
            result = policy_gate(render("Jordan"))
            self.assertTrue(result.ok, f"{render.__name__}: {result.reasons}")

    def test_promise_detection_deduplicates_matches(self):
        promises = detect_promised_actions("We will refund you. Yes, we will refund you.")
        self.assertEqual(len(promises), 1)

    def test_empty_draft_detects_nothing(self):
        self.assertEqual(detect_promised_actions("   "), [])
