"""
Message composition.

One lookup table keyed by the new status decides the wording of both the
email and the push notification. ``approved`` and ``sent`` have different
wording for email delivery and clinic pickup.
"""

from dataclasses import dataclass

from django.conf import settings
from django.utils.html import escape

from ..models import DeliveryMethod
from ..status import PrescriptionStatus as S

CONFIRMATION = 'confirmation'
STATUS_UPDATE = 'status_update'

EVENTS = (CONFIRMATION, STATUS_UPDATE)

REASON_NOT_SPECIFIED = 'not specified'

STATUS_LABELS = {
    S.REQUESTED: 'Requested',
    S.UNDER_REVIEW: 'Under review',
    S.APPROVED: 'Approved',
    S.REJECTED: 'Rejected',
    S.READY: 'Ready for pickup',
    S.SENT: 'Sent',
}


@dataclass
class Message:
    subject: str
    text_body: str
    html_body: str
    push_title: str
    push_body: str


def _approved(rx, ctx):
    if rx.delivery_method == DeliveryMethod.EMAIL:
        line = (f"Your prescription for {rx.medication_name} has been approved "
                f"and will be sent to your email shortly.")
    else:
        line = (f"Your prescription for {rx.medication_name} has been approved "
                f"and will soon be available for pickup at the clinic.")
    return ['Good news!', line], 'Prescription approved', line


def _ready(rx, ctx):
    days = settings.CLINIC_PICKUP_RETENTION_DAYS
    lines = [
        f"Your prescription for {rx.medication_name} is ready for pickup at the clinic.",
        f"It will be held at the clinic reception for up to {days} days.",
    ]
    return lines, 'Prescription ready', lines[0]


def _rejected(rx, ctx):
    reason = ctx.get('rejection_reason') or rx.rejection_reason or REASON_NOT_SPECIFIED
    lines = [
        f"Unfortunately your request for {rx.medication_name} was rejected.",
        f"Reason: {reason}",
        "You may submit a new request with the corrected information.",
    ]
    return lines, 'Prescription rejected', f"Reason: {reason}"


def _sent(rx, ctx):
    if rx.delivery_method == DeliveryMethod.EMAIL:
        line = (f"Your prescription for {rx.medication_name} has been sent by email. "
                f"Please check your inbox and your spam folder.")
        return [line], 'Prescription sent', line
    lines = [
        f"Your prescription for {rx.medication_name} has been marked as delivered.",
        "If you do not recognize this pickup, contact the clinic reception immediately.",
    ]
    return lines, 'Prescription delivered', lines[0]


def _under_review(rx, ctx):
    line = f"Your request for {rx.medication_name} is being reviewed."
    return [line], 'Prescription under review', line


def _requested(rx, ctx):
    line = f"Your request for {rx.medication_name} is back in the queue."
    return [line], 'Prescription updated', line


STATUS_TEMPLATES = {
    S.APPROVED: _approved,
    S.READY: _ready,
    S.REJECTED: _rejected,
    S.SENT: _sent,
    S.UNDER_REVIEW: _under_review,
    S.REQUESTED: _requested,
}


def _label(status):
    return STATUS_LABELS.get(status, status)


def _signature():
    lines = ['', 'Kind regards,', f"{settings.CLINIC_NAME} team"]
    if settings.CLINIC_CONTACT_PHONE:
        lines.append(f"Questions? Call {settings.CLINIC_CONTACT_PHONE}.")
    return lines


def _render(greeting_name, intro, details, extra_lines):
    text = [f"Hello {greeting_name},", '', intro, '', 'Request details:']
    text += [f"- {k}: {v}" for k, v in details]
    if extra_lines:
        text += [''] + list(extra_lines)
    text += _signature()

    html = [f"<p>Hello <strong>{escape(greeting_name)}</strong>,</p>", f"<p>{escape(intro)}</p>", '<ul>']
    html += [f"<li><strong>{escape(k)}:</strong> {escape(v)}</li>" for k, v in details]
    html.append('</ul>')
    html += [f"<p>{escape(line)}</p>" for line in extra_lines]
    html += [f"<p>{escape(line)}</p>" for line in _signature() if line]
    return '\n'.join(text), '\n'.join(html)


def compose(prescription, event, context=None):
    """
    Build the email and push content for ``event``.

    ``context`` carries ``old_status`` / ``new_status`` / ``rejection_reason``
    for status updates.
    """
    if event not in EVENTS:
        raise ValueError(f"Unknown notification event: {event!r}")
    context = context or {}
    rx = prescription
    name = rx.patient_name or 'patient'
    protocol = str(rx.pk)

    if event == CONFIRMATION:
        subject = f"Prescription request received - {settings.CLINIC_NAME}"
        intro = 'Your prescription request was received successfully.'
        details = [
            ('Medication', rx.medication_name),
            ('Status', _label(rx.status)),
            ('Protocol', protocol),
        ]
        extra = ['You will be notified whenever the status of your request changes.']
        text, html = _render(name, intro, details, extra)
        return Message(
            subject=subject, text_body=text, html_body=html,
            push_title='Request received',
            push_body=f"Your request for {rx.medication_name} was received.",
        )

    new_status = context.get('new_status') or rx.status
    old_status = context.get('old_status')
    template = STATUS_TEMPLATES.get(new_status)
    if template is None:
        extra, push_title, push_body = [], 'Prescription updated', f"New status: {_label(new_status)}"
    else:
        extra, push_title, push_body = template(rx, context)

    subject = f"Prescription update: {_label(new_status)} - {settings.CLINIC_NAME}"
    intro = 'The status of your prescription request has been updated.'
    details = [('Medication', rx.medication_name)]
    if old_status:
        details.append(('Previous status', _label(old_status)))
    details += [('New status', _label(new_status)), ('Protocol', protocol)]
    text, html = _render(name, intro, details, extra)
    return Message(
        subject=subject, text_body=text, html_body=html,
        push_title=push_title, push_body=push_body,
    )
