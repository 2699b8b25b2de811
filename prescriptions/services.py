import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ObjectDoesNotExist
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from . import activity, notifications
from .exceptions import Forbidden, NotFound, ValidationError
from .intake.address import address_from_profile
from .intake.requests import DELIVERY_METHOD_ALIASES
from .models import (
    DeliveryMethod,
    Prescription,
    PrescriptionType,
    PushSubscription,
    Role,
    UserProfile,
)
from .permissions import get_role, is_staff_role
from .status import (
    PrescriptionStatus,
    apply_milestones,
    check_transition,
    require_status,
    resolve_status_filter,
)
from .validators import (
    digits_only,
    is_valid_email,
    is_valid_national_id,
    is_valid_phone,
    is_valid_postal_code,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@dataclass
class PageResult:
    items: list
    total: int
    page: int
    limit: int

    @property
    def pages(self):
        return math.ceil(self.total / self.limit) if self.total else 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fetch(prescription_id, for_update=False):
    qs = Prescription.objects.select_related('patient')
    if for_update:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=prescription_id)
    except (Prescription.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound(
            message='Prescription not found',
            code='PRESCRIPTION_NOT_FOUND',
            detail={'prescription_id': str(prescription_id)},
        )


def _require_staff(actor):
    if not is_staff_role(actor):
        raise Forbidden(
            message='Only staff or administrators can perform this action.',
            code='UNAUTHORIZED_ROLE',
        )


def patient_snapshot(patient):
    """Identity fields copied onto a prescription at creation time."""
    try:
        profile = patient.profile
    except ObjectDoesNotExist:
        profile = None

    address = address_from_profile(profile.address) if profile else None
    return {
        'name': patient.get_full_name() or patient.get_username(),
        'email': patient.email or '',
        'national_id': (profile.national_id or '') if profile else '',
        'phone': profile.phone if profile else '',
        'address': address,
    }


def _apply_snapshot(rx, patient, req):
    snap = patient_snapshot(patient)
    rx.patient_name = snap['name']
    rx.patient_email = req.patient_email or snap['email']
    rx.patient_national_id = req.patient_national_id or snap['national_id']

    phone = req.patient_phone or digits_only(snap['phone'])
    rx.patient_phone = phone if is_valid_phone(phone) else ''

    address = req.patient_address or snap['address']
    rx.patient_address = address.format() if address else ''
    rx.patient_postal_code = (
        req.patient_postal_code or (address.postal_code if address else '')
    )


def _apply_request_fields(rx, req):
    """Copy the fields the client actually sent onto ``rx``."""
    simple = (
        'medication_name', 'dosage', 'prescription_type', 'delivery_method',
        'observations', 'number_of_boxes', 'return_requested', 'patient_email',
        'patient_national_id', 'patient_postal_code', 'patient_phone',
        'internal_notes',
    )
    changed = []
    for name in simple:
        if name in req.provided and getattr(rx, name) != getattr(req, name):
            setattr(rx, name, getattr(req, name))
            changed.append(name)

    if 'patient_address' in req.provided:
        address = req.patient_address
        formatted = address.format() if address else ''
        if formatted != rx.patient_address:
            rx.patient_address = formatted
            changed.append('patient_address')
        if address and address.postal_code and 'patient_postal_code' not in req.provided:
            rx.patient_postal_code = address.postal_code
    return changed


def validate_delivery(rx):
    """
    Delivery-method invariants.

    Only the white (branco) form may be emailed. Email delivery needs a valid
    email, CPF, 8-digit CEP and a non-empty address.
    """
    if rx.delivery_method != DeliveryMethod.EMAIL:
        return

    if rx.prescription_type != PrescriptionType.BRANCO:
        raise ValidationError(
            message='Only white (branco) prescriptions can be delivered by email.',
            code='DELIVERY_METHOD_NOT_ALLOWED',
            detail={'prescription_type': rx.prescription_type},
        )

    errors = []
    if not is_valid_email(rx.patient_email):
        errors.append({'field': 'patientEmail', 'message': 'A valid email is required for email delivery.'})
    if not is_valid_national_id(rx.patient_national_id):
        errors.append({'field': 'patientNationalId', 'message': 'A valid CPF is required for email delivery.'})
    if not is_valid_postal_code(rx.patient_postal_code):
        errors.append({'field': 'patientPostalCode', 'message': 'An 8-digit postal code is required for email delivery.'})
    if not (rx.patient_address or '').strip():
        errors.append({'field': 'patientAddress', 'message': 'An address is required for email delivery.'})

    if errors:
        raise ValidationError(
            message='Missing or invalid contact data required for email delivery',
            code='MISSING_EMAIL_DATA',
            detail={'errors': errors},
        )


def check_duplicate_request(patient, medication_name, now=None):
    """
    30 天内同一患者重复申请同一药品 → ValidationError(DUPLICATE_REQUEST)。

    药名去掉首尾空格后不区分大小写比较。并发提交不加锁（可接受的竞态）。
    """
    now = now or timezone.now()
    window = settings.PRESCRIPTION_DUPLICATE_WINDOW_DAYS
    since = now - timedelta(days=window)

    existing = (
        Prescription.objects.filter(
            patient=patient,
            medication_name__iexact=medication_name.strip(),
            created_at__gte=since,
        )
        .order_by('-created_at')
        .first()
    )
    if existing is None:
        return

    raise ValidationError(
        message=(
            f"A request for '{existing.medication_name}' was already made on "
            f"{timezone.localtime(existing.created_at).strftime('%Y-%m-%d')}. "
            f"The same medication can only be requested once every {window} days."
        ),
        code='DUPLICATE_REQUEST',
        detail={'existing_prescription_id': str(existing.id), 'window_days': window},
    )


def _notify_status_change(rx, old_status, actor):
    notifications.schedule(
        rx,
        notifications.STATUS_UPDATE,
        {
            'old_status': old_status,
            'new_status': rx.status,
            'rejection_reason': rx.rejection_reason,
        },
        actor,
    )


def _enter_status(rx, new_status, rejection_reason=''):
    """
    Set ``rx.status`` and its side fields. Returns (skipped, milestone).

    Entering ``rejected`` stores the reason (possibly blank); every other
    status clears it.
    """
    skipped = check_transition(
        rx.status, new_status, strict=settings.PRESCRIPTION_STRICT_TRANSITIONS,
    )
    if skipped:
        logger.warning(
            "[Prescription] %s: transition %s → %s skips the usual order",
            rx.pk, rx.status, new_status,
        )

    rx.status = new_status
    if new_status == PrescriptionStatus.REJECTED:
        rx.rejection_reason = rejection_reason or ''
        if not rx.rejection_reason:
            logger.warning("[Prescription] %s rejected without a reason", rx.pk)
    else:
        rx.rejection_reason = ''

    milestone = apply_milestones(rx, new_status, timezone.now())
    return skipped, milestone


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def create_prescription(actor, req):
    """
    Patient-originated request.

    Raises Forbidden / ValidationError. The confirmation notification is
    best effort and never fails the create.
    """
    if get_role(actor) != Role.PATIENT:
        raise Forbidden(
            message='Only patients can request prescriptions.',
            code='UNAUTHORIZED_ROLE',
        )

    rx = Prescription(
        patient=actor,
        medication_name=req.medication_name,
        dosage=req.dosage,
        prescription_type=req.prescription_type,
        delivery_method=req.delivery_method or DeliveryMethod.CLINIC,
        observations=req.observations,
        number_of_boxes=req.number_of_boxes,
        return_requested=req.return_requested,
        status=PrescriptionStatus.REQUESTED,
        created_by=actor,
        updated_by=actor,
    )
    _apply_snapshot(rx, actor, req)
    validate_delivery(rx)
    check_duplicate_request(actor, rx.medication_name)

    rx.save()
    logger.info("[Prescription] Created %s (%s) for patient %s", rx.pk, rx.medication_name, actor.pk)

    activity.record(
        actor, activity.Action.CREATE,
        f"Prescription requested for {rx.medication_name}",
        prescription=rx,
        metadata={'medication': rx.medication_name, 'type': rx.prescription_type},
    )
    notifications.schedule(rx, notifications.CONFIRMATION, actor=actor)
    return rx


def _apply_filters(qs, params):
    """status / type / deliveryMethod / date range / medicationName / search."""
    status = params.get('status')
    if status:
        qs = qs.filter(status__in=resolve_status_filter(status))

    prescription_type = params.get('prescriptionType') or params.get('type')
    if prescription_type:
        if prescription_type not in PrescriptionType.values:
            raise ValidationError(
                message=f"Invalid prescription type {prescription_type!r}",
                code='VALIDATION_ERROR',
                detail={'allowed': list(PrescriptionType.values)},
            )
        qs = qs.filter(prescription_type=prescription_type)

    delivery_method = params.get('deliveryMethod')
    if delivery_method:
        method = DELIVERY_METHOD_ALIASES.get(delivery_method.strip().lower())
        if method is None:
            raise ValidationError(message=f"Invalid delivery method {delivery_method!r}")
        qs = qs.filter(delivery_method=method)

    start = _parse_bound(params.get('startDate'), end=False)
    end = _parse_bound(params.get('endDate'), end=True)
    if start:
        qs = qs.filter(created_at__gte=start)
    if end:
        qs = qs.filter(created_at__lte=end)

    medication_name = params.get('medicationName')
    if medication_name:
        qs = qs.filter(medication_name__icontains=medication_name)

    search = (params.get('search') or '').strip()
    if search:
        query = (
            Q(patient_name__icontains=search)
            | Q(medication_name__icontains=search)
            | Q(patient_email__icontains=search)
        )
        if digits_only(search):
            query |= Q(patient_national_id__icontains=digits_only(search))
        qs = qs.filter(query)
    return qs


def _paginate(qs, params, default_limit):
    page = _parse_int(params.get('page'), default=1, name='page')
    limit = _parse_int(params.get('limit'), default=default_limit, name='limit')
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    total = qs.count()
    offset = (page - 1) * limit
    items = list(qs.order_by('-created_at')[offset:offset + limit])
    return PageResult(items=items, total=total, page=page, limit=limit)


def list_prescriptions(actor, params, own_only=False):
    """
    Filtered, paginated list, newest first.

    Patients always see only their own records.
    """
    qs = Prescription.objects.select_related('patient')
    if own_only or get_role(actor) == Role.PATIENT:
        qs = qs.filter(patient=actor)
    return _paginate(_apply_filters(qs, params), params, default_limit=10 if own_only else 20)


def list_patient_prescriptions(actor, patient_id, params):
    """Staff view of one patient's prescriptions."""
    _require_staff(actor)
    User = get_user_model()
    if not User.objects.filter(pk=patient_id).exists():
        raise NotFound(
            message='Patient not found',
            code='PATIENT_NOT_FOUND',
            detail={'patient_id': patient_id},
        )
    qs = Prescription.objects.select_related('patient').filter(patient_id=patient_id)
    return _paginate(_apply_filters(qs, params), params, default_limit=20)


EXPORT_FORMATS = ('json', 'csv')


def export_prescriptions(actor, params):
    """
    Every prescription matching the list filters, newest first, no paging.

    Each export is written to the activity log.
    """
    _require_staff(actor)
    fmt = (params.get('format') or 'json').strip().lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(
            message=f"Invalid export format {fmt!r}",
            detail={'allowed': list(EXPORT_FORMATS)},
        )

    qs = Prescription.objects.select_related('patient', 'created_by')
    items = list(_apply_filters(qs, params).order_by('-created_at'))

    filters = {key: value for key, value in params.items() if key not in ('format', 'page', 'limit') and value}
    activity.record(
        actor, activity.Action.EXPORT,
        f"Exported {len(items)} prescriptions in format {fmt}",
        metadata={'format': fmt, 'count': len(items), 'filters': filters},
    )
    logger.info("[Prescription] export of %d rows (%s) by %s", len(items), fmt, actor.pk)
    return fmt, items


def _parse_int(value, default, name):
    if value in (None, ''):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(message=f"'{name}' must be an integer", detail={name: value})


def _parse_bound(value, end):
    """ISO date or datetime. A bare end date covers the whole day."""
    if not value:
        return None
    try:
        # 格式正确但日期不存在（2024-02-30）时抛 ValueError
        parsed = parse_datetime(value)
        day = parse_date(value) if parsed is None else None
    except ValueError:
        parsed = day = None
    if parsed is None:
        if day is None:
            raise ValidationError(
                message=f"Invalid date {value!r}, expected YYYY-MM-DD",
                detail={'date': value},
            )
        parsed = datetime.combine(day, time.max if end else time.min)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def get_prescription(prescription_id, actor):
    rx = _fetch(prescription_id)
    if get_role(actor) == Role.PATIENT and rx.patient_id != actor.pk:
        raise Forbidden(
            message='You do not have access to this prescription.',
            code='FORBIDDEN',
        )
    return rx


def update_status(prescription_id, status_value, actor, internal_notes=None, rejection_reason=''):
    """
    Staff transition. Unknown status → ValidationError and nothing changes.

    The notification is queued after the write; its failure does not
    affect the result.
    """
    _require_staff(actor)
    new_status = require_status(status_value)

    with transaction.atomic():
        rx = _fetch(prescription_id, for_update=True)
        old_status = rx.status
        skipped, milestone = _enter_status(rx, new_status, rejection_reason)
        if internal_notes is not None:
            rx.internal_notes = internal_notes
        rx.updated_by = actor
        rx.save()

    logger.info("[Prescription] %s status %s → %s", rx.pk, old_status, new_status)
    activity.record(
        actor, activity.Action.STATUS_CHANGE,
        f"Status changed from {old_status} to {new_status}",
        prescription=rx,
        metadata={
            'from': old_status,
            'to': new_status.value,
            'skipped_transition': skipped,
            'milestone': milestone,
        },
    )

    if old_status != new_status:
        _notify_status_change(rx, old_status, actor)
    return rx


def _resolve_patient(req):
    User = get_user_model()
    if req.patient_id is None and not req.patient_national_id:
        raise ValidationError(
            message='patientId or patientNationalId is required.',
            code='PATIENT_REQUIRED',
        )
    if req.patient_id is not None:
        try:
            return User.objects.get(pk=req.patient_id)
        except User.DoesNotExist:
            pass
    # 未知 id 时继续按 CPF 查
    if req.patient_national_id:
        profile = (
            UserProfile.objects.select_related('user')
            .filter(national_id=req.patient_national_id)
            .first()
        )
        if profile is not None:
            return profile.user
    raise NotFound(message='Patient not found', code='PATIENT_NOT_FOUND')


def manage_as_staff(actor, req, prescription_id=None):
    """
    Staff create (prescription_id=None) or edit of a prescription on a
    patient's behalf. Duplicate suppression does not apply.
    """
    _require_staff(actor)
    if prescription_id is None:
        return _staff_create(actor, req)
    return _staff_update(actor, req, prescription_id)


def _staff_create(actor, req):
    patient = _resolve_patient(req)
    status = req.status or PrescriptionStatus.APPROVED

    rx = Prescription(
        patient=patient,
        medication_name=req.medication_name,
        dosage=req.dosage,
        prescription_type=req.prescription_type,
        delivery_method=req.delivery_method or DeliveryMethod.CLINIC,
        observations=req.observations,
        number_of_boxes=req.number_of_boxes,
        return_requested=req.return_requested,
        internal_notes=req.internal_notes,
        status=status,
        rejection_reason=req.rejection_reason if status == PrescriptionStatus.REJECTED else '',
        created_by=actor,
        updated_by=actor,
    )
    _apply_snapshot(rx, patient, req)
    validate_delivery(rx)
    apply_milestones(rx, status, timezone.now())
    rx.save()

    logger.info("[Prescription] Staff %s created %s for patient %s", actor.pk, rx.pk, patient.pk)
    activity.record(
        actor, activity.Action.CREATE,
        f"Prescription created by staff for {rx.medication_name}",
        prescription=rx,
        metadata={'medication': rx.medication_name, 'type': rx.prescription_type, 'origin': 'staff'},
    )
    return rx


def _staff_update(actor, req, prescription_id):
    with transaction.atomic():
        rx = _fetch(prescription_id, for_update=True)
        old_status = rx.status
        changed = _apply_request_fields(rx, req)

        if req.status and req.status != old_status:
            reason = req.rejection_reason if 'rejection_reason' in req.provided else rx.rejection_reason
            _enter_status(rx, PrescriptionStatus(req.status), reason)
            changed.append('status')
        elif 'rejection_reason' in req.provided and rx.status == PrescriptionStatus.REJECTED:
            rx.rejection_reason = req.rejection_reason
            changed.append('rejection_reason')

        validate_delivery(rx)
        rx.updated_by = actor
        rx.save()

    activity.record(
        actor, activity.Action.UPDATE,
        f"Prescription edited for {rx.medication_name}",
        prescription=rx,
        metadata={'changed': changed, 'from': old_status, 'to': rx.status},
    )
    if rx.status != old_status:
        _notify_status_change(rx, old_status, actor)
    return rx


def delete_prescription(prescription_id, actor):
    """Admin-only hard delete. The audit entry is written first."""
    if get_role(actor) != Role.ADMIN:
        raise Forbidden(
            message='Only administrators can delete prescriptions.',
            code='UNAUTHORIZED_ROLE',
        )
    rx = _fetch(prescription_id)
    activity.record(
        actor, activity.Action.DELETE,
        f"Deleted prescription {rx.pk}",
        prescription=rx,
        metadata={'medication': rx.medication_name, 'patient_id': rx.patient_id, 'status': rx.status},
    )
    rx_id = rx.pk
    rx.delete()
    logger.info("[Prescription] Admin %s deleted %s", actor.pk, rx_id)
    return rx_id


def repeat_prescription(prescription_id, actor):
    """Copy an existing prescription into a new ``requested`` one."""
    _require_staff(actor)
    original = _fetch(prescription_id)

    copy_fields = (
        'patient_id', 'medication_name', 'dosage', 'prescription_type', 'delivery_method',
        'number_of_boxes', 'observations', 'patient_name', 'patient_email',
        'patient_national_id', 'patient_phone', 'patient_postal_code', 'patient_address',
    )
    rx = Prescription(
        status=PrescriptionStatus.REQUESTED,
        created_by=actor,
        updated_by=actor,
        **{name: getattr(original, name) for name in copy_fields},
    )
    rx.save()

    activity.record(
        actor, activity.Action.REPEAT,
        f"Repeated prescription {original.pk} as {rx.pk}",
        prescription=rx,
        metadata={'original_prescription': str(original.pk), 'medication': rx.medication_name},
    )
    notifications.schedule(rx, notifications.CONFIRMATION, actor=actor)
    return rx


def prescription_history(prescription_id, actor):
    """
    Activity entries for one prescription, oldest first.

    Staff can still read the history of a deleted prescription.
    """
    try:
        get_prescription(prescription_id, actor)
    except NotFound:
        entries = activity.history(prescription_id)
        if is_staff_role(actor) and entries.exists():
            return list(entries)
        raise
    return list(activity.history(prescription_id))


def prescription_stats():
    def grouped(field):
        rows = Prescription.objects.values(field).annotate(count=Count('id')).order_by(field)
        return {row[field]: row['count'] for row in rows}

    return {
        'by_status': grouped('status'),
        'by_type': grouped('prescription_type'),
        'by_delivery_method': grouped('delivery_method'),
        'total': Prescription.objects.count(),
        'recent': list(Prescription.objects.order_by('-created_at')[:5]),
    }


def save_push_subscription(user, data, user_agent=''):
    endpoint = (data or {}).get('endpoint')
    keys = (data or {}).get('keys') or {}
    if not endpoint or not keys.get('p256dh') or not keys.get('auth'):
        raise ValidationError(
            message='Subscription must include endpoint, keys.p256dh and keys.auth.',
            code='INVALID_SUBSCRIPTION',
        )

    subscription, _ = PushSubscription.objects.update_or_create(
        endpoint=endpoint,
        defaults={
            'user': user,
            'p256dh': keys['p256dh'],
            'auth': keys['auth'],
            'user_agent': (user_agent or '')[:300],
        },
    )
    return subscription


def remove_push_subscription(user, endpoint=None):
    qs = PushSubscription.objects.filter(user=user)
    if endpoint:
        qs = qs.filter(endpoint=endpoint)
    deleted, _ = qs.delete()
    return deleted
