import uuid
from django.db import models


class Message(models.Model):
    """
    A single message on a thread: either a real message (inbound from the
    customer, outbound from the agent or a human) or the thread's draft.

    At most one draft exists per thread; regenerating a draft deletes the
    old row first (see services.drafts.replace_draft).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    thread = models.ForeignKey("Thread", on_delete=models.CASCADE, related_name="messages")

    direction = models.CharField(max_length=10)  # inbound, outbound
    role = models.CharField(max_length=10, default="message")  # message, draft
    from_identifier = models.CharField(max_length=255, null=True, blank=True)
    to_identifier = models.CharField(max_length=255, null=True, blank=True)
    body = models.TextField(blank=True, default="")

    # Provider message id; uniqueness makes webhook redelivery idempotent
    external_message_id = models.CharField(max_length=255, unique=True, null=True, blank=True)

    message_date = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    sent_by_agent = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "messages"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["thread", "role", "created_at"], name="idx_message_thread_role"),
        ]

    def __str__(self):
        return f"{self.direction}/{self.role} on thread={self.thread_id}"
