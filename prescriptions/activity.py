"""
Activity log recorder.

Append-only. A failed insert is logged and swallowed so it never blocks
the business operation that triggered it; the savepoint keeps a failed
insert from breaking the caller's transaction.
"""

import logging

from django.db import transaction

from .models import ActivityLog

logger = logging.getLogger(__name__)


class Action:
    CREATE = 'create'
    UPDATE = 'update'
    STATUS_CHANGE = 'status_change'
    REPEAT = 'repeat'
    DELETE = 'delete'
    NOTIFICATION_SENT = 'notification_sent'
    NOTIFICATION_FAILED = 'notification_failed'
    EXPORT = 'export_prescriptions'


def record(actor, action, details, prescription=None, metadata=None):
    """
    Append one ActivityLog entry.

    ``prescription`` may be a Prescription instance or a raw id. Returns the
    created entry, or None when the write failed.
    """
    prescription_ref = getattr(prescription, 'pk', prescription)
    actor_id = getattr(actor, 'pk', actor)

    try:
        with transaction.atomic():
            return ActivityLog.objects.create(
                actor_id=actor_id,
                action=action,
                details=details,
                prescription_ref=prescription_ref,
                metadata=metadata or {},
            )
    except Exception:
        logger.exception(
            "[Activity] Failed to record action=%s prescription=%s", action, prescription_ref,
        )
        return None


def history(prescription_id):
    """Entries for one prescription, oldest first."""
    return (
        ActivityLog.objects.filter(prescription_ref=prescription_id)
        .select_related('actor')
        .order_by('created_at', 'id')
    )
