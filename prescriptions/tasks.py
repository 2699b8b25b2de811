import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(acks_late=True)
def dispatch_notification(prescription_id: str, event: str, context=None, actor_id=None):
    """
    异步发送处方通知（email + push）。

    不重试：每个通道的结果已写进 activity log，重试会给成功的通道重复发送。
    返回 DispatchResult.as_dict()，方便在 result backend 里观察。
    """
    from prescriptions.notifications.dispatcher import dispatch

    logger.info("[Celery][dispatch_notification] event=%s prescription_id=%s", event, prescription_id)
    result = dispatch(prescription_id, event, context, actor_id)
    if result.failed:
        logger.warning("[Celery] Notification %s for %s finished with errors: %s",
                       event, prescription_id, result.errors)
    return result.as_dict()
