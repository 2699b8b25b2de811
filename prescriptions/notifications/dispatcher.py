"""
Notification dispatcher.

schedule()  — called by the services after the primary write. Hands the
              work to the Celery task; a scheduling failure is logged and
              never reaches the caller.
dispatch()  — the task body. Composes the message, tries email and push,
              and returns a DispatchResult that is also written to the
              activity log (notification_sent / notification_failed).

Transport errors never propagate out of dispatch().
"""

import logging
from dataclasses import asdict, dataclass, field

from .. import activity
from ..exceptions import SubscriptionExpired, TransportError
from ..models import Prescription, PushSubscription
from . import mailer, push
from .messages import compose

logger = logging.getLogger(__name__)

SENT = 'sent'
FAILED = 'failed'
SKIPPED = 'skipped'


@dataclass
class DispatchResult:
    prescription_id: str
    event: str
    email: str = SKIPPED
    push: str = SKIPPED
    errors: list = field(default_factory=list)

    @property
    def failed(self):
        return bool(self.errors)

    @property
    def delivered(self):
        return SENT in (self.email, self.push)

    def as_dict(self):
        return asdict(self)


def schedule(prescription, event, context=None, actor=None):
    """Queue a notification. Returns False if it could not be queued."""
    from ..tasks import dispatch_notification

    try:
        dispatch_notification.delay(
            str(prescription.pk), event, context or {}, getattr(actor, 'pk', actor),
        )
    except Exception:
        logger.warning(
            "[Notify] Could not queue %s for prescription %s", event, prescription.pk,
            exc_info=True,
        )
        return False
    return True


def dispatch(prescription_id, event, context=None, actor_id=None):
    context = context or {}
    result = DispatchResult(prescription_id=str(prescription_id), event=event)

    try:
        prescription = Prescription.objects.select_related('patient').get(pk=prescription_id)
    except Prescription.DoesNotExist:
        logger.warning("[Notify] Prescription %s no longer exists, skipping %s", prescription_id, event)
        result.errors.append('prescription_not_found')
        return result

    message = compose(prescription, event, context)
    # 每个通道互相隔离：一个通道出错不影响另一个通道和 _record
    for channel, send in CHANNELS:
        try:
            send(prescription, message, context, result)
        except Exception as exc:
            logger.exception("[Notify] %s channel crashed for prescription %s", channel, prescription.pk)
            setattr(result, channel, FAILED)
            result.errors.append(f"{channel}: {exc}")
    _record(prescription, actor_id, result)
    return result


def _send_email(prescription, message, context, result):
    to = prescription.patient_email or getattr(prescription.patient, 'email', '')
    if not to:
        logger.info("[Notify] No email address for prescription %s", prescription.pk)
        return
    if not mailer.email_configured():
        logger.info("[Notify] Email not configured, skipping prescription %s", prescription.pk)
        return

    try:
        mailer.send_email(to, message.subject, message.text_body, message.html_body)
    except TransportError as exc:
        logger.warning("[Notify] Email failed for prescription %s: %s", prescription.pk, exc.message)
        result.email = FAILED
        result.errors.append(exc.message)
        return
    result.email = SENT


def _send_push(prescription, message, context, result):
    if not push.push_configured():
        return

    subscriptions = list(PushSubscription.objects.filter(user_id=prescription.patient_id))
    if not subscriptions:
        return

    payload = {
        'title': message.push_title,
        'body': message.push_body,
        'tag': f"prescription-{prescription.pk}",
        'data': {
            'prescriptionId': str(prescription.pk),
            'status': context.get('new_status') or prescription.status,
            'type': result.event,
        },
    }

    delivered = 0
    for subscription in subscriptions:
        try:
            push.send_push(subscription.as_subscription_info(), payload)
        except SubscriptionExpired as exc:
            logger.info("[Notify] Removing expired push subscription %s", subscription.endpoint)
            subscription.delete()
            result.errors.append(exc.message)
        except TransportError as exc:
            logger.warning("[Notify] Push failed for prescription %s: %s", prescription.pk, exc.message)
            result.errors.append(exc.message)
        else:
            delivered += 1

    result.push = SENT if delivered else FAILED


CHANNELS = (
    ('email', _send_email),
    ('push', _send_push),
)


def _record(prescription, actor_id, result):
    if result.failed:
        activity.record(
            actor_id, activity.Action.NOTIFICATION_FAILED,
            f"Notification '{result.event}' failed: {'; '.join(result.errors)}",
            prescription=prescription, metadata=result.as_dict(),
        )
    elif result.delivered:
        activity.record(
            actor_id, activity.Action.NOTIFICATION_SENT,
            f"Notification '{result.event}' sent",
            prescription=prescription, metadata=result.as_dict(),
        )
