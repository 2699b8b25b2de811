"""
统一异常处理器。

挂到 DRF 的 EXCEPTION_HANDLER setting 上。
所有响应（无论成功还是失败）前端都能用同一套逻辑判断：
  response.success === false  → 出问题了，看 errorCode
  response.success === true   → 成功

统一错误响应格式：
{
    "success":   false,
    "type":      "validation_error" | "not_found" | "forbidden" | "error",
    "errorCode": "MISSING_EMAIL_DATA",
    "message":   "Missing contact data required for email delivery",
    "detail":    { ... }  // 可选
}
"""

import logging

from django.db import DatabaseError
from django.http import Http404, JsonResponse
from rest_framework import exceptions as drf_exceptions
from rest_framework.views import exception_handler as drf_default_handler

from .exceptions import BaseAppException, PersistenceError

logger = logging.getLogger(__name__)

# DRF 自带异常 → (type, errorCode)
_DRF_ERROR_CODES = {
    drf_exceptions.ValidationError: ('validation_error', 'VALIDATION_ERROR'),
    drf_exceptions.ParseError: ('validation_error', 'MALFORMED_REQUEST'),
    drf_exceptions.NotAuthenticated: ('forbidden', 'NOT_AUTHENTICATED'),
    drf_exceptions.AuthenticationFailed: ('forbidden', 'AUTHENTICATION_FAILED'),
    drf_exceptions.PermissionDenied: ('forbidden', 'UNAUTHORIZED_ROLE'),
    drf_exceptions.NotFound: ('not_found', 'NOT_FOUND'),
    drf_exceptions.MethodNotAllowed: ('error', 'METHOD_NOT_ALLOWED'),
    drf_exceptions.Throttled: ('rate_limited', 'RATE_LIMITED'),
}


def error_body(type_, code, message, detail=None):
    body = {
        'success': False,
        'type': type_,
        'errorCode': code,
        'message': message,
    }
    if detail is not None:
        body['detail'] = detail
    return body


def unified_exception_handler(exc, context):
    """
    DRF exception handler entry point.

    优先级：
    1. BaseAppException 及其子类 → 统一格式
    2. DRF 自带的 APIException（校验 / 认证 / 权限）→ 转成统一格式
    3. 数据库异常 → PERSISTENCE_ERROR 500
    4. 其他异常 → 返回 None，由 Django 按 500 处理
    """

    # --- 1. 我们自己的异常体系 ---
    if isinstance(exc, BaseAppException):
        body = error_body(exc.type, exc.code, exc.message, exc.detail)
        return JsonResponse(body, status=exc.http_status)

    # --- 2. DRF 自带的异常 ---
    if isinstance(exc, Http404):
        exc = drf_exceptions.NotFound()

    if isinstance(exc, drf_exceptions.APIException):
        response = drf_default_handler(exc, context)
        type_, code = 'error', 'API_ERROR'
        for exc_cls, mapping in _DRF_ERROR_CODES.items():
            if isinstance(exc, exc_cls):
                type_, code = mapping
                break
        if isinstance(exc, drf_exceptions.ValidationError):
            message, detail = 'Request validation failed', exc.detail
        else:
            message, detail = str(exc.detail), None
        response.data = error_body(type_, code, message, detail)
        return response

    # --- 3. 存储不可用 ---
    if isinstance(exc, DatabaseError):
        logger.exception("[API] Database error while handling %s", context.get('view'))
        exc = PersistenceError('Storage is temporarily unavailable')
        return JsonResponse(error_body(exc.type, exc.code, exc.message), status=exc.http_status)

    return None
