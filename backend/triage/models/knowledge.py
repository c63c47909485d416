import uuid
from django.db import models


class KBArticle(models.Model):
    """Knowledge-base article the drafter can cite."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=300)
    body = models.TextField()
    intent_tags = models.JSONField(default=list, blank=True)
    source = models.CharField(max_length=20, default="manual")  # manual, learning

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "kb_articles"
        ordering = ["title"]

    def __str__(self):
        return self.title


class AgentInstruction(models.Model):
    """A standing instruction fed to the drafter alongside KB results."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=300)
    body = models.TextField()
    is_active = models.BooleanField(default=True)
    source = models.CharField(max_length=20, default="manual")  # manual, learning

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "agent_instructions"
        ordering = ["-created_at"]

    def __str__(self):
        return self.title
