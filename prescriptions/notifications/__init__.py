from .dispatcher import DispatchResult, dispatch, schedule
from .messages import CONFIRMATION, STATUS_UPDATE, Message, compose

__all__ = [
    'CONFIRMATION',
    'STATUS_UPDATE',
    'DispatchResult',
    'Message',
    'compose',
    'dispatch',
    'schedule',
]
