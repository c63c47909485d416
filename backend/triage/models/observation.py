import uuid
from django.db import models
from django.db.models import Q


class Observation(models.Model):
    """
    The record of one human-handled interval on a thread.

    intervention_end == null means the observation is active. The partial
    unique constraint guarantees at most one active observation per thread,
    even if two takeover signals race.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    thread = models.ForeignKey("Thread", on_delete=models.CASCADE, related_name="observations")

    intervention_start = models.DateTimeField()
    intervention_end = models.DateTimeField(null=True, blank=True)

    handler = models.CharField(max_length=255)
    channel = models.CharField(max_length=20)  # email, ticket_system, admin_ui
    signal_type = models.CharField(max_length=30)  # direct_email, cc_support, ticket_update, admin_takeover

    # Ordered list of {direction, from, to, content, timestamp, external_message_id}
    observed_messages = models.JSONField(default=list, blank=True)

    # Filled on exit
    resolution_type = models.CharField(max_length=30, null=True, blank=True)
    resolution_summary = models.TextField(null=True, blank=True)
    questions_asked = models.JSONField(default=list, blank=True)
    troubleshooting_steps = models.JSONField(default=list, blank=True)
    new_information = models.JSONField(default=list, blank=True)

    # Learning bookkeeping (exactly-once trigger, generation guard)
    learning_triggered_at = models.DateTimeField(null=True, blank=True)
    learning_generated_at = models.DateTimeField(null=True, blank=True)
    learning_summary = models.TextField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "intervention_observations"
        ordering = ["-intervention_start"]
        constraints = [
            models.UniqueConstraint(
                fields=["thread"],
                condition=Q(intervention_end__isnull=True),
                name="uniq_active_observation_per_thread",
            ),
        ]

    @property
    def is_active(self) -> bool:
        return self.intervention_end is None

    def __str__(self):
        status = "active" if self.is_active else self.resolution_type
        return f"Observation thread={self.thread_id} by {self.handler} ({status})"
