"""
Intake dataclasses — 业务逻辑唯一认识的标准格式。

所有 Intake 的 transform() 必须返回 PrescriptionRequest。
业务层（services.py）只消费这个结构，永远不碰原始 request body。
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class Address:
    """
    Normalized postal address.

    A free-form string address is kept whole in ``street``.
    """

    street: str = ""
    number: str = ""
    complement: str = ""
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""

    def is_empty(self) -> bool:
        return not any((self.street, self.number, self.neighborhood, self.city, self.state))

    def format(self) -> str:
        parts = [p for p in (self.street, self.number, self.complement, self.neighborhood) if p]
        if self.city and self.state:
            parts.append(f"{self.city}/{self.state}")
        elif self.city:
            parts.append(self.city)
        return ", ".join(parts)


@dataclass
class PrescriptionRequest:
    """
    标准内部处方请求格式。

    provided     客户端显式传入的字段名集合（部分更新时只覆盖这些字段）。
    raw_payload  保存原始数据，用于排查问题，不参与业务逻辑。
    """

    medication_name: str = ""
    dosage: str = ""
    prescription_type: str = ""
    delivery_method: str = ""
    observations: str = ""
    number_of_boxes: int = 1
    return_requested: bool = False

    patient_email: str = ""
    patient_national_id: str = ""
    patient_postal_code: str = ""
    patient_phone: str = ""
    patient_address: Optional[Address] = None

    # staff-only
    patient_id: Optional[int] = None
    status: str = ""
    internal_notes: str = ""
    rejection_reason: str = ""

    provided: set = field(default_factory=set)
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class StatusUpdate:
    status: str
    internal_notes: Optional[str] = None
    rejection_reason: str = ""
