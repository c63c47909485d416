import uuid
from django.db import models


class LearningProposal(models.Model):
    """
    A candidate KB article or instruction update distilled from a closed
    observation. Always created as `pending`; only an explicit human approval
    publishes it.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    observation = models.ForeignKey("Observation", on_delete=models.CASCADE, related_name="proposals")
    thread = models.ForeignKey("Thread", on_delete=models.CASCADE, related_name="learning_proposals")

    proposal_type = models.CharField(max_length=30)  # kb_article, instruction_update
    title = models.CharField(max_length=300)
    summary = models.TextField(blank=True, default="")
    proposed_content = models.TextField()
    # Redacted excerpts the proposal was derived from
    source_context = models.JSONField(default=dict, blank=True)

    status = models.CharField(max_length=20, default="pending", db_index=True)
    # pending, approved, rejected, published; approve_proposal publishes in
    # the same transaction, so stored rows go pending -> published

    reviewed_by = models.CharField(max_length=255, null=True, blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    review_notes = models.TextField(null=True, blank=True)

    published_article = models.ForeignKey(
        "KBArticle", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    published_instruction = models.ForeignKey(
        "AgentInstruction", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "learning_proposals"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.proposal_type}: {self.title} ({self.status})"
