# apps/bookingapp/signals.py
import logging

from django.conf import settings
from django.dispatch import Signal, receiver

from apps.bookingapp.tasks import record_buffer_override_audit

logger = logging.getLogger(__name__)

# Sent with ``record`` (OverrideAuditRecord) whenever a buffer violation is
# admitted by override.
buffer_override_recorded = Signal()


@receiver(buffer_override_recorded)
def forward_override_to_audit_sink(sender, record, **kwargs):
    """
    Handle buffer override signal.
    Hands the audit record to the audit task, asynchronously unless disabled.
    """
    payload = record.to_dict()

    if getattr(settings, "SCHEDULING_POLICY", {}).get("AUDIT_ASYNC", True):
        record_buffer_override_audit.delay(payload)
    else:
        record_buffer_override_audit(payload)

    logger.debug(f"Override audit record dispatched for {record.who}")
