"""
Seed the knowledge base with the starter articles and standing drafting
instructions, so the drafter has something to cite on day one. Agent
settings rows are created from the Django defaults when missing, so the
admin UI has something to edit.

Usage:
    python manage.py seed_knowledge
    python manage.py seed_knowledge --reset  # Clear manual entries and re-seed
"""
from django.conf import settings
from django.core.management.base import BaseCommand

from triage.models.agent_setting import AgentSetting
from triage.models.knowledge import AgentInstruction, KBArticle
from triage.services import agent_settings


KB_ARTICLES = [
    # ─── Firmware ─────────────────────────────────────────────────────
    {
        "title": "Firmware update process (Apex, G-Series, Cluster)",
        "body": (
            "Firmware files are downloaded from the customer portal after logging in with "
            "the order email. Apex and G-Series units update over USB with the updater "
            "tool; Cluster units update from a USB stick inserted with the ignition on. "
            "Keep the vehicle battery on a charger during the update."
        ),
        "intent_tags": ["FIRMWARE_UPDATE_REQUEST"],
    },
    {
        "title": "Portal login loop or access denied",
        "body": (
            "A login loop on the firmware portal is almost always a stale session. Ask the "
            "customer to clear cookies for the portal or use a private window, then log in "
            "with the exact email used at checkout. Accounts created with a different email "
            "than the order will not see any downloads."
        ),
        "intent_tags": ["FIRMWARE_ACCESS_ISSUE"],
    },
    # ─── Install / compatibility ─────────────────────────────────────
    {
        "title": "Installation guides by unit",
        "body": (
            "Install guides ship in the box and are in the portal under Documents. Apex "
            "units plug into the factory harness with no splicing. G-Series units need the "
            "included adapter harness. Cluster installs require removing the dash bezel; "
            "point customers to the video walkthrough in the portal."
        ),
        "intent_tags": ["INSTALL_GUIDANCE"],
    },
    {
        "title": "Vehicle compatibility",
        "body": (
            "Compatibility depends on model year and trim. Ask for year, make, model and "
            "trim before confirming. Units with a factory premium audio amplifier may need "
            "the amplifier bypass module."
        ),
        "intent_tags": ["COMPATIBILITY_QUESTION"],
    },
    # ─── Troubleshooting ─────────────────────────────────────────────
    {
        "title": "Screen black or unit not powering on",
        "body": (
            "Check the fuse on the power lead and that the ignition wire is on a switched "
            "source. A black screen with sound usually means the brightness wire is tied to "
            "the headlight circuit; cycling the headlights confirms it."
        ),
        "intent_tags": ["FUNCTIONALITY_BUG", "PRODUCT_SUPPORT"],
    },
]

INSTRUCTIONS = [
    {
        "title": "Ask before troubleshooting",
        "body": "Always confirm which unit the customer has before giving troubleshooting steps.",
    },
    {
        "title": "Never commit to outcomes",
        "body": (
            "Do not promise refunds, replacements or delivery dates. Say the team will "
            "review the case instead."
        ),
    },
]


class Command(BaseCommand):
    help = "Seed starter KB articles, agent instructions and agent settings"

    def add_arguments(self, parser):
        parser.add_argument(
            "--reset", action="store_true",
            help="Delete manually seeded articles and instructions before seeding",
        )

    def handle(self, *args, **options):
        if options["reset"]:
            articles, _ = KBArticle.objects.filter(source="manual").delete()
            instructions, _ = AgentInstruction.objects.filter(source="manual").delete()
            self.stdout.write(f"Cleared {articles} articles and {instructions} instructions.")

        created = 0
        skipped = 0
        for article in KB_ARTICLES:
            _, was_created = KBArticle.objects.get_or_create(
                title=article["title"],
                defaults={"body": article["body"], "intent_tags": article["intent_tags"], "source": "manual"},
            )
            created += was_created
            skipped += not was_created

        for instruction in INSTRUCTIONS:
            _, was_created = AgentInstruction.objects.get_or_create(
                title=instruction["title"],
                defaults={"body": instruction["body"], "source": "manual"},
            )
            created += was_created
            skipped += not was_created

        defaults = {
            agent_settings.AUTO_SEND_ENABLED: settings.AUTO_SEND_ENABLED,
            agent_settings.CONFIDENCE_THRESHOLD: settings.AUTO_SEND_CONFIDENCE_THRESHOLD,
            agent_settings.ORDER_CONFIDENCE_THRESHOLD: settings.AUTO_SEND_ORDER_CONFIDENCE_THRESHOLD,
            agent_settings.INTENT_THRESHOLDS: {},
        }
        for key, value in defaults.items():
            _, was_created = AgentSetting.objects.get_or_create(
                key=key, defaults={"value": value, "updated_by": "seed_knowledge"},
            )
            created += was_created
            skipped += not was_created

        self.stdout.write(self.style.SUCCESS(
            f"Seeded knowledge base: {created} created, {skipped} already existed. "
            f"Articles: {KBArticle.objects.count()}, instructions: {AgentInstruction.objects.count()}"
        ))
