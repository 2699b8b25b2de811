"""
Prescription status vocabulary.

Closed set of states, the advisory forward ordering between them, the
aliases accepted from clients, and the milestone timestamps written the
first time a state is reached.

    requested → under_review → approved → ready → sent
                      └──────────┴→ rejected

Transitions are permissive by default: any status may be set from any
other. A jump outside FORWARD_TRANSITIONS is reported as "skipped" so the
caller can log it; with PRESCRIPTION_STRICT_TRANSITIONS enabled it is
rejected instead.
"""

from django.db import models

from .exceptions import ValidationError


class PrescriptionStatus(models.TextChoices):
    REQUESTED = 'requested', 'Requested'
    UNDER_REVIEW = 'under_review', 'Under review'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'
    READY = 'ready', 'Ready for pickup'
    SENT = 'sent', 'Sent'


S = PrescriptionStatus

FORWARD_TRANSITIONS = {
    S.REQUESTED: {S.UNDER_REVIEW, S.APPROVED, S.REJECTED},
    S.UNDER_REVIEW: {S.APPROVED, S.REJECTED},
    S.APPROVED: {S.READY, S.SENT, S.REJECTED},
    S.READY: {S.SENT},
    S.REJECTED: set(),
    S.SENT: set(),
}

# status reached → milestone field (set once, never cleared)
MILESTONE_FIELDS = {
    S.APPROVED: 'approved_at',
    S.READY: 'ready_at',
    S.SENT: 'sent_at',
}

# Single-value aliases: UI labels and the legacy Portuguese values.
STATUS_ALIASES = {
    'pending': S.REQUESTED,
    'solicitada': S.REQUESTED,
    'em_analise': S.UNDER_REVIEW,
    'aprovada': S.APPROVED,
    'rejeitada': S.REJECTED,
    'pronta': S.READY,
    'enviada': S.SENT,
    'entregue': S.SENT,
    'delivered': S.SENT,
}

# Filter-only groups.
STATUS_GROUPS = {
    'pending': (S.REQUESTED,),
    'open': (S.REQUESTED, S.UNDER_REVIEW, S.APPROVED, S.READY),
    'closed': (S.REJECTED, S.SENT),
}


def resolve_status(value):
    """Return the canonical status for ``value`` or None if unrecognized."""
    if value is None:
        return None
    key = str(value).strip().lower()
    if key in S.values:
        return S(key)
    return STATUS_ALIASES.get(key)


def require_status(value):
    status = resolve_status(value)
    if status is None:
        raise ValidationError(
            message=f"Invalid status {value!r}. Allowed values: {', '.join(S.values)}",
            code='INVALID_STATUS',
            detail={'status': value, 'allowed': list(S.values)},
        )
    return status


def resolve_status_filter(value):
    """
    Expand a list-filter value into the set of canonical statuses.

    Accepts a canonical value, an alias, a group name, or a comma separated
    mix of those. Raises ValidationError if any part is unknown.
    """
    statuses = []
    for part in str(value).split(','):
        key = part.strip().lower()
        if not key:
            continue
        if key in STATUS_GROUPS:
            statuses.extend(STATUS_GROUPS[key])
        else:
            statuses.append(require_status(key))
    # keep order, drop repeats
    return list(dict.fromkeys(statuses))


def is_forward_transition(old, new):
    if old == new:
        return True
    return new in FORWARD_TRANSITIONS.get(old, set())


def check_transition(old, new, strict=False):
    """
    Returns True when ``old → new`` skips the advisory ordering.

    In strict mode a skip raises ValidationError(INVALID_TRANSITION).
    """
    skipped = not is_forward_transition(old, new)
    if skipped and strict:
        raise ValidationError(
            message=f"Transition from '{old}' to '{new}' is not allowed",
            code='INVALID_TRANSITION',
            detail={'from': old, 'to': new,
                    'allowed': sorted(FORWARD_TRANSITIONS.get(S(old), set()))},
        )
    return skipped


def apply_milestones(prescription, status, now):
    """
    Stamp the milestone for ``status`` if it has not been reached before.

    Returns the name of the field that was set, or None.
    """
    field = MILESTONE_FIELDS.get(status)
    if field and getattr(prescription, field) is None:
        setattr(prescription, field, now)
        return field
    return None
