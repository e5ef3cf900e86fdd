"""
ProcessedEvent model for webhook replay protection.

Stores delivery IDs of handled webhooks so a redelivered event is
short-circuited before any platform lookups happen.
"""

from datetime import timedelta

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class ProcessedEvent(models.Model):
    """
    Tracks handled webhook deliveries.

    Recorded only after an event was handled successfully, so a failed
    delivery stays eligible for the provider's retry.
    """

    nonce = models.CharField(verbose_name=_("nonce"), max_length=255, unique=True, db_index=True)
    provider = models.CharField(verbose_name=_("provider"), max_length=50, db_index=True)
    topic = models.CharField(verbose_name=_("topic"), max_length=100, blank=True)
    processed_at = models.DateTimeField(verbose_name=_("processed at"), auto_now_add=True)

    class Meta:
        db_table = "pointsman_processed_event"
        verbose_name = _("processed event")
        verbose_name_plural = _("processed events")
        indexes = [
            models.Index(fields=["provider", "processed_at"], name="pointsman_p_provide_3c1f0e_idx"),
        ]

    def __str__(self):
        return f"{self.provider}:{self.nonce[:20]}"

    @classmethod
    def cleanup_old_events(cls, days: int | None = None):
        """Remove events older than N days."""
        if days is None:
            from pointsman.conf import pointsman_settings
            days = pointsman_settings.EVENT_CLEANUP_DAYS
        cutoff = timezone.now() - timedelta(days=days)
        return cls.objects.filter(processed_at__lt=cutoff).delete()
