"""
Seed data script: pushes realistic demo conversations through the ingest
pipeline so the inbox shows every path: macros, clarifying questions,
escalations, a no-reply close and a human takeover with learning.

Usage: cd backend && python seed_data.py
"""
import os
import sys
import django

# Setup Django
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'support_desk.settings')
django.setup()

from django.core.management import call_command

from triage.models.thread import Thread
from triage.services.ingest_pipeline import IngestRequest, process_ingest_request
from triage.services.intervention import admin_takeover_signal
from triage.services.learning import generate_learning_proposals
from triage.services.observation import (
    ObservationResolution,
    enter_observation_mode,
    exit_observation_mode,
)


CONVERSATIONS = [
    # ─── Answered or clarified by the agent ─────────────────────────
    {
        "external_id": "demo-thread-001",
        "subject": "Firmware site keeps kicking me off",
        "from_identifier": "jordan.miles@example.com",
        "customer_name": "Jordan",
        "messages": [
            "Hey, the firmware site keeps kicking me off every time I log in. What do I do?",
        ],
    },
    {
        "external_id": "demo-thread-002",
        "subject": "Update email",
        "from_identifier": "sam.ortiz@example.com",
        "customer_name": "Sam",
        "messages": [
            "I watched the video but didn't get the email it talks about. Where is it?",
        ],
    },
    {
        "external_id": "demo-thread-003",
        "subject": "Refund please",
        "from_identifier": "casey.nguyen@example.com",
        "customer_name": "Casey",
        "messages": [
            "The unit doesn't fit my dash. I'd like a refund.",
            "Sure, it's order #48213.",
        ],
    },
    {
        "external_id": "demo-thread-004",
        "subject": "Will this work in my truck?",
        "from_identifier": "drew.parker@example.com",
        "customer_name": "Drew",
        "messages": [
            "Is the G-Series compatible with a 2019 Ford F-150 with the premium audio?",
        ],
    },
    # ─── Escalations ───────────────────────────────────────────────
    {
        "external_id": "demo-thread-005",
        "subject": "Calling my bank",
        "from_identifier": "riley.stone@example.com",
        "customer_name": "Riley",
        "messages": [
            "Nobody has answered me in a week. I'm filing a chargeback with my bank.",
        ],
    },
    # ─── Closed without a reply ────────────────────────────────────
    {
        "external_id": "demo-thread-006",
        "subject": "Re: Firmware update",
        "from_identifier": "morgan.lee@example.com",
        "customer_name": "Morgan",
        "messages": [
            "That fixed it, thank you!",
        ],
    },
]

# Thread handed to a teammate, then returned with notes the agent can learn from
TAKEOVER = {
    "thread": "demo-thread-004",
    "handler": "alex@example.com",
    "resolution": {
        "resolution_type": "resolved",
        "resolution_summary": "Confirmed fitment; customer needs the amp bypass module.",
        "questions_asked": ["Does the truck have the factory premium audio amplifier?"],
        "troubleshooting_steps": ["Check trim level", "Add amplifier bypass module to the order"],
        "new_information": ["2019+ F-150 premium audio requires the amplifier bypass module"],
    },
}


def seed():
    # Check if already seeded
    existing = Thread.objects.filter(external_id__startswith="demo-thread-").count()
    if existing > 0:
        print(f"Database already has {existing} demo threads. Skipping seed.")
        print("Run 'python manage.py flush --no-input' to clear, then re-seed.")
        return

    call_command("seed_knowledge")

    for i, conversation in enumerate(CONVERSATIONS):
        for j, body in enumerate(conversation["messages"]):
            result = process_ingest_request(IngestRequest(
                channel="email",
                external_id=conversation["external_id"],
                subject=conversation["subject"],
                body_text=body,
                from_identifier=conversation["from_identifier"],
                to_identifier="support@example.com",
                external_message_id=f"{conversation['external_id']}-msg-{j + 1}",
                metadata={"customer_name": conversation["customer_name"]},
            ))
            print(
                f"  [{i + 1}/{len(CONVERSATIONS)}] {conversation['subject'][:30]:30s} | "
                f"{result.intent or '-':24s} | {result.action or '-':26s} | {result.previous_state} -> {result.state}"
            )

    # Human takeover + learning
    thread = Thread.objects.get(external_id=TAKEOVER["thread"])
    enter_observation_mode(admin_takeover_signal(thread.id, TAKEOVER["handler"]))
    observation = exit_observation_mode(thread.id, ObservationResolution(**TAKEOVER["resolution"]))
    proposals = generate_learning_proposals(observation.id)
    print(f"  Takeover by {TAKEOVER['handler']} on '{thread.subject}': {len(proposals)} learning proposal(s)")

    # Print summary by state
    print(f"\n{'='*50}")
    print(f"Seed complete! {len(CONVERSATIONS)} conversations:\n")
    for thread in Thread.objects.filter(external_id__startswith="demo-thread-").order_by("external_id"):
        print(f"  {thread.external_id} | {thread.state:14s} | {thread.subject}")
    print(f"\nRun the server: python manage.py runserver")
    print(f"Run the worker: python manage.py qcluster")


if __name__ == "__main__":
    seed()
