"""
BaseIntake — 所有请求解析器的抽象基类。

每种请求只需：
1. 继承 BaseIntake
2. 实现 transform()
3. 需要时 super().validate() 后追加检查

View 层只调用 process()，拿到校验通过的 dataclass。
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ValidationError

MAX_TEXT_LENGTH = 200
# 与 Prescription.patient_email / patient_address 的列宽一致
MAX_EMAIL_LENGTH = 254
MAX_ADDRESS_LENGTH = 500


def pick(raw: dict, *keys):
    """Return (found, value) for the first key present in ``raw``."""
    for key in keys:
        if key in raw:
            return True, raw[key]
    return False, None


def clean_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


class BaseIntake(ABC):
    """
    三步流水线：parse → transform → validate

    子类必须实现 transform()；
    validate() 收集 self._errors 并统一抛出 ValidationError。
    """

    def __init__(self, raw_body: Any):
        self._raw_body = raw_body
        self._parsed: dict = {}
        self._errors: list = []

    # ── 提供默认实现，子类可 override ──────────────────────────────────────

    def parse(self) -> dict:
        raw = self._raw_body
        if isinstance(raw, (bytes, str)):
            try:
                raw = json.loads(raw or "{}")
            except ValueError:
                raise ValidationError(message="Request body is not valid JSON.", code="MALFORMED_REQUEST")
        if not isinstance(raw, dict):
            raise ValidationError(message="Request body must be a JSON object.", code="MALFORMED_REQUEST")
        self._parsed = raw
        return raw

    @abstractmethod
    def transform(self) -> Any:
        """将 self._parsed 转换为内部 dataclass。"""

    def error(self, field: str, message: str) -> None:
        self._errors.append({"field": field, "message": message})

    def validate(self, result: Any) -> None:
        if self._errors:
            raise ValidationError(
                message="Request validation failed.",
                code="VALIDATION_ERROR",
                detail={"errors": self._errors},
            )

    # ── 对外统一入口 ───────────────────────────────────────────────────────

    def process(self) -> Any:
        """parse → transform → validate，返回校验通过的结果。"""
        self.parse()
        result = self.transform()
        self.validate(result)
        return result
