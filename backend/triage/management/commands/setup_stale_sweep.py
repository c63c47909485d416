"""
Management command to register the stale human-handoff sweep with django-q.

Usage:
    python manage.py setup_stale_sweep
    python manage.py setup_stale_sweep --minutes 5

This creates (or updates) a Schedule entry that runs
check_stale_human_handling() every 15 minutes by default. Safe to run
multiple times; it uses update_or_create.
"""
from django.core.management.base import BaseCommand
from django_q.models import Schedule


class Command(BaseCommand):
    help = "Register the periodic stale human-handoff sweep with django-q"

    def add_arguments(self, parser):
        parser.add_argument(
            "--minutes", type=int, default=15,
            help="Sweep interval in minutes (default: 15)",
        )

    def handle(self, *args, **options):
        minutes = options["minutes"]
        schedule, created = Schedule.objects.update_or_create(
            name="stale_human_handoff_sweep",
            defaults={
                "func": "triage.services.stale_handoff.check_stale_human_handling",
                "schedule_type": Schedule.MINUTES,
                "minutes": minutes,
                "repeats": -1,  # run forever
            },
        )
        verb = "Created" if created else "Updated"
        self.stdout.write(self.style.SUCCESS(
            f"{verb} periodic task: {schedule.name} (every {minutes} minutes)"
        ))
