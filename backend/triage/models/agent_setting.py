from django.db import models


class AgentSetting(models.Model):
    """
    Runtime-editable agent configuration (auto-send toggle, thresholds).
    Keys absent from this table fall back to Django settings.
    """

    key = models.CharField(max_length=100, unique=True)
    value = models.JSONField()
    updated_by = models.CharField(max_length=255, null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "agent_settings"
        ordering = ["key"]

    def __str__(self):
        return f"{self.key}={self.value!r}"
