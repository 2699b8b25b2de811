"""
Email transport (Django mail framework).

Any delivery failure is re-raised as TransportError; the dispatcher is the
only caller and decides what to do with it.
"""

import logging
import smtplib

from django.conf import settings
from django.core.mail import EmailMultiAlternatives

from ..exceptions import TransportError

logger = logging.getLogger(__name__)


def email_configured():
    return bool(settings.EMAIL_HOST)


def send_email(to, subject, text_body, html_body=None):
    message = EmailMultiAlternatives(
        subject=subject,
        body=text_body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to],
    )
    if html_body:
        message.attach_alternative(html_body, 'text/html')

    try:
        sent = message.send(fail_silently=False)
    except (smtplib.SMTPException, OSError) as exc:
        raise TransportError(
            message=f"Email delivery to {to} failed: {exc}",
            code='EMAIL_SEND_FAILED',
            detail={'to': to},
        ) from exc

    if not sent:
        raise TransportError(
            message=f"Email delivery to {to} was rejected",
            code='EMAIL_SEND_FAILED',
            detail={'to': to},
        )
    logger.info("[Notify] Email '%s' sent to %s", subject, to)
    return sent
