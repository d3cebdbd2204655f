# apps/bookingapp/tasks.py
import json
import logging

from celery import shared_task

audit_logger = logging.getLogger("salonsched.audit")


@shared_task
def record_buffer_override_audit(record):
    """Write a buffer override audit record to the audit log"""
    audit_logger.info(
        json.dumps(
            {"event": "buffer_override", **record},
            sort_keys=True,
            default=str,
        )
    )

    return f"Recorded buffer override by {record.get('who')}"
