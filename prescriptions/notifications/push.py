"""
Web Push transport (pywebpush / VAPID).

404 and 410 from the push service mean the browser subscription is gone;
those raise SubscriptionExpired so the dispatcher can delete the record.
"""

import json
import logging

from django.conf import settings
from pywebpush import WebPushException, webpush

from ..exceptions import SubscriptionExpired, TransportError

logger = logging.getLogger(__name__)

EXPIRED_STATUS_CODES = (404, 410)


def push_configured():
    return bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY)


def send_push(subscription_info, payload):
    """Send one JSON payload to one subscription."""
    endpoint = subscription_info.get('endpoint')
    try:
        webpush(
            subscription_info=subscription_info,
            data=json.dumps(payload),
            vapid_private_key=settings.VAPID_PRIVATE_KEY,
            # webpush 会往 claims 里写 aud/exp，每次传新的 dict
            vapid_claims={'sub': settings.VAPID_CLAIMS_EMAIL},
        )
    except WebPushException as exc:
        status_code = getattr(exc.response, 'status_code', None)
        if status_code in EXPIRED_STATUS_CODES:
            raise SubscriptionExpired(
                message=f"Push subscription expired ({status_code})",
                detail={'endpoint': endpoint, 'status_code': status_code},
            ) from exc
        raise TransportError(
            message=f"Push delivery failed: {exc}",
            code='PUSH_SEND_FAILED',
            detail={'endpoint': endpoint, 'status_code': status_code},
        ) from exc
    except (OSError, ValueError, TypeError) as exc:
        # requests 的连接错误都是 OSError 子类；VAPID 私钥或订阅密钥格式错误是 ValueError / TypeError
        raise TransportError(
            message=f"Push delivery failed: {exc}",
            code='PUSH_SEND_FAILED',
            detail={'endpoint': endpoint},
        ) from exc

    logger.info("[Notify] Push sent to %s", endpoint)
