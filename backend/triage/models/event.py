import uuid
from django.db import models


class ImmutableEventError(Exception):
    pass


class Event(models.Model):
    """
    Append-only event log: the canonical audit trail for transitions,
    policy blocks, promise detections and human handoffs.
    Rows are written once; updates and deletes are refused.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    thread = models.ForeignKey("Thread", on_delete=models.CASCADE, related_name="events")

    # Event classification
    event_type = models.CharField(max_length=50, db_index=True)
    # Types: auto_triage, observation_recorded, run_suppressed, draft_saved,
    #        draft_sent, policy_blocked, promise_detected, pending_action_set,
    #        pending_action_cleared, human_intervention_started,
    #        human_intervention_ended, human_handling_timeout, thread_archived,
    #        thread_unarchived, commitment_approved, state_changed

    # What triggered this event
    source = models.CharField(max_length=50)  # "system", "agent", "admin", "monitor"
    source_id = models.CharField(max_length=36, null=True, blank=True)

    payload = models.JSONField(default=dict, blank=True)

    # Human-readable description
    description = models.TextField()

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "events"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["thread", "-created_at"], name="idx_event_thread_date"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableEventError(f"Event {self.id} is append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableEventError(f"Event {self.id} is append-only")

    def __str__(self):
        return f"{self.event_type} for thread={self.thread_id} at {self.created_at}"
