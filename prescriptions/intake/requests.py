"""
具体 Intake 实现。

  PatientRequestIntake  — POST /prescriptions（患者自己申请）
  StaffRequestIntake    — POST /prescriptions/admin, PUT /prescriptions/admin/<id>
  StatusUpdateIntake    — PATCH /prescriptions/<id>/status

字段名兼容前端的 camelCase、snake_case 以及旧版葡语字段（cpf / cep / endereco）。
联系信息只校验格式；email 投递时“必须存在”的约束在 services 里结合患者资料检查。
"""

from ..models import DeliveryMethod, PrescriptionType
from ..status import require_status
from ..validators import (
    digits_only,
    is_valid_email,
    is_valid_national_id,
    is_valid_phone,
    is_valid_postal_code,
)
from ..exceptions import ValidationError
from .address import parse_address
from .base import (
    MAX_ADDRESS_LENGTH,
    MAX_EMAIL_LENGTH,
    MAX_TEXT_LENGTH,
    BaseIntake,
    clean_text,
    pick,
)
from .types import PrescriptionRequest, StatusUpdate

DELIVERY_METHOD_ALIASES = {
    "email": DeliveryMethod.EMAIL,
    "clinic": DeliveryMethod.CLINIC,
    "retirar_clinica": DeliveryMethod.CLINIC,
    "pickup": DeliveryMethod.CLINIC,
}

# field name → accepted request keys
FIELD_KEYS = {
    "medication_name": ("medicationName", "medication_name", "medication"),
    "dosage": ("dosage",),
    "prescription_type": ("prescriptionType", "prescription_type", "type"),
    "delivery_method": ("deliveryMethod", "delivery_method"),
    "observations": ("observations",),
    "number_of_boxes": ("numberOfBoxes", "number_of_boxes"),
    "return_requested": ("returnRequested", "return_requested"),
    "patient_email": ("patientEmail", "patient_email", "email"),
    "patient_national_id": ("patientNationalId", "patient_national_id", "patientCpf", "cpf"),
    "patient_postal_code": ("patientPostalCode", "patient_postal_code", "patientCEP", "cep"),
    "patient_address": ("patientAddress", "patient_address", "endereco", "address"),
    "patient_phone": ("patientPhone", "patient_phone", "phone"),
}

STAFF_FIELD_KEYS = {
    "patient_id": ("patientId", "patient_id", "userId"),
    "status": ("status",),
    "internal_notes": ("internalNotes", "internal_notes"),
    "rejection_reason": ("rejectionReason", "rejection_reason"),
}


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "sim")
    return bool(value)


class PrescriptionIntake(BaseIntake):
    """Shared transform for patient and staff payloads."""

    field_keys = FIELD_KEYS
    # create 时必填；部分更新时关闭
    require_core = True

    def transform(self) -> PrescriptionRequest:
        raw = self._parsed
        req = PrescriptionRequest(raw_payload=raw)

        for name, keys in self.field_keys.items():
            found, value = pick(raw, *keys)
            if not found:
                continue
            req.provided.add(name)
            setter = getattr(self, f"_set_{name}", None)
            if setter is not None:
                setter(req, value)
            else:
                setattr(req, name, clean_text(value))

        if self.require_core:
            self._check_required(req)
        return req

    # ── per-field setters ─────────────────────────────────────────────────

    def _set_medication_name(self, req, value):
        req.medication_name = clean_text(value)
        if len(req.medication_name) > MAX_TEXT_LENGTH:
            self.error("medicationName", f"Must be at most {MAX_TEXT_LENGTH} characters.")
        elif not req.medication_name:
            self.error("medicationName", "Medication name is required.")

    def _set_dosage(self, req, value):
        req.dosage = clean_text(value)
        if len(req.dosage) > MAX_TEXT_LENGTH:
            self.error("dosage", f"Must be at most {MAX_TEXT_LENGTH} characters.")

    def _set_prescription_type(self, req, value):
        req.prescription_type = clean_text(value).lower()
        if req.prescription_type not in PrescriptionType.values:
            self.error(
                "prescriptionType",
                f"Must be one of: {', '.join(PrescriptionType.values)}.",
            )

    def _set_delivery_method(self, req, value):
        method = DELIVERY_METHOD_ALIASES.get(clean_text(value).lower())
        if method is None:
            self.error("deliveryMethod", "Must be 'email' or 'clinic'.")
            return
        req.delivery_method = method.value

    def _set_number_of_boxes(self, req, value):
        try:
            boxes = int(value)
        except (TypeError, ValueError):
            boxes = 0
        if boxes < 1:
            self.error("numberOfBoxes", "Must be a positive integer.")
            return
        req.number_of_boxes = boxes

    def _set_return_requested(self, req, value):
        req.return_requested = _as_bool(value)

    def _set_patient_email(self, req, value):
        req.patient_email = clean_text(value).lower()
        if len(req.patient_email) > MAX_EMAIL_LENGTH:
            self.error("patientEmail", f"Must be at most {MAX_EMAIL_LENGTH} characters.")
        elif req.patient_email and not is_valid_email(req.patient_email):
            self.error("patientEmail", "Invalid email address.")

    def _set_patient_national_id(self, req, value):
        req.patient_national_id = digits_only(value)
        if req.patient_national_id and not is_valid_national_id(req.patient_national_id):
            self.error("patientNationalId", "Invalid CPF.")

    def _set_patient_postal_code(self, req, value):
        req.patient_postal_code = digits_only(value)
        if req.patient_postal_code and not is_valid_postal_code(req.patient_postal_code):
            self.error("patientPostalCode", "Postal code must have 8 digits.")

    def _set_patient_address(self, req, value):
        try:
            req.patient_address = parse_address(value)
        except ValidationError as exc:
            self.error("patientAddress", exc.message)
            return
        if req.patient_address and len(req.patient_address.format()) > MAX_ADDRESS_LENGTH:
            self.error("patientAddress", f"Must be at most {MAX_ADDRESS_LENGTH} characters.")

    def _set_patient_phone(self, req, value):
        req.patient_phone = digits_only(value)
        if req.patient_phone and not is_valid_phone(req.patient_phone):
            self.error("patientPhone", "Phone must have 10 or 11 digits.")

    # ──────────────────────────────────────────────────────────────────────

    def _check_required(self, req):
        if "medication_name" not in req.provided:
            self.error("medicationName", "Medication name is required.")
        if not req.dosage:
            self.error("dosage", "Dosage is required.")
        if "prescription_type" not in req.provided:
            self.error("prescriptionType", "Prescription type is required.")
        if not req.delivery_method:
            req.delivery_method = DeliveryMethod.CLINIC.value


class PatientRequestIntake(PrescriptionIntake):
    pass


class StaffRequestIntake(PrescriptionIntake):
    field_keys = {**FIELD_KEYS, **STAFF_FIELD_KEYS}

    def __init__(self, raw_body, partial=False):
        super().__init__(raw_body)
        self.require_core = not partial

    def _set_patient_id(self, req, value):
        if value in (None, ""):
            return
        try:
            req.patient_id = int(value)
        except (TypeError, ValueError):
            self.error("patientId", "Invalid patient id.")

    def _set_status(self, req, value):
        try:
            req.status = require_status(value).value
        except ValidationError as exc:
            self.error("status", exc.message)


class StatusUpdateIntake(BaseIntake):

    def transform(self) -> StatusUpdate:
        raw = self._parsed
        _, status = pick(raw, "status")
        if status in (None, ""):
            raise ValidationError(message="Status is required.", code="INVALID_STATUS")

        found_notes, notes = pick(raw, "internalNotes", "internal_notes")
        _, reason = pick(raw, "rejectionReason", "rejection_reason")

        return StatusUpdate(
            # 状态值本身由 services.update_status 解析，非法值抛 INVALID_STATUS
            status=clean_text(status),
            internal_notes=clean_text(notes) if found_notes else None,
            rejection_reason=clean_text(reason),
        )
