"""
Response serializers — ORM 对象 → JSON-able dict。

只负责「输出格式化」，不做任何解析或校验。
输入解析和校验在 prescriptions/intake/。

所有成功响应都包在 envelope 里：
    {"success": true, "data": ..., "message": "..."}
列表额外带 count / total / page / pages。
"""


def _iso(value):
    return value.isoformat() if value else None


def envelope(data=None, message=None, **extra):
    body = {'success': True, 'data': data}
    if message:
        body['message'] = message
    body.update(extra)
    return body


def serialize_prescription(rx, include_internal=False):
    """
    Prescription → camelCase dict.

    internalNotes / createdBy / updatedBy 只给 staff 看。
    """
    data = {
        'id': str(rx.id),
        'patientId': rx.patient_id,
        'patientName': rx.patient_name,
        'patientEmail': rx.patient_email,
        'patientNationalId': rx.patient_national_id,
        'patientPhone': rx.patient_phone,
        'patientPostalCode': rx.patient_postal_code,
        'patientAddress': rx.patient_address,
        'medicationName': rx.medication_name,
        'dosage': rx.dosage,
        'numberOfBoxes': rx.number_of_boxes,
        'returnRequested': rx.return_requested,
        'prescriptionType': rx.prescription_type,
        'deliveryMethod': rx.delivery_method,
        'status': rx.status,
        'observations': rx.observations,
        'rejectionReason': rx.rejection_reason,
        'createdAt': _iso(rx.created_at),
        'updatedAt': _iso(rx.updated_at),
        'approvedAt': _iso(rx.approved_at),
        'readyAt': _iso(rx.ready_at),
        'sentAt': _iso(rx.sent_at),
    }
    if include_internal:
        data['internalNotes'] = rx.internal_notes
        data['createdBy'] = rx.created_by_id
        data['updatedBy'] = rx.updated_by_id
    return data


def serialize_page(page, include_internal=False, message=None):
    """PageResult → list envelope."""
    items = [serialize_prescription(rx, include_internal) for rx in page.items]
    return envelope(
        items,
        message=message,
        count=len(items),
        total=page.total,
        page=page.page,
        pages=page.pages,
    )


def serialize_activity(entry):
    actor = entry.actor
    return {
        'id': entry.id,
        'action': entry.action,
        'details': entry.details,
        'prescriptionId': str(entry.prescription_ref) if entry.prescription_ref else None,
        'actor': {
            'id': actor.pk,
            'name': actor.get_full_name() or actor.get_username(),
        } if actor else None,
        'metadata': entry.metadata,
        'createdAt': _iso(entry.created_at),
    }


def serialize_stats(stats):
    return {
        'total': stats['total'],
        'byStatus': stats['by_status'],
        'byType': stats['by_type'],
        'byDeliveryMethod': stats['by_delivery_method'],
        'recent': [serialize_prescription(rx, include_internal=True) for rx in stats['recent']],
    }


def serialize_push_subscription(subscription):
    return {
        'id': subscription.id,
        'endpoint': subscription.endpoint,
        'createdAt': _iso(subscription.created_at),
    }


EXPORT_COLUMNS = (
    'id', 'patientName', 'patientNationalId', 'medicationName', 'dosage', 'prescriptionType',
    'status', 'deliveryMethod', 'createdAt', 'createdBy', 'observations', 'rejectionReason',
)


def serialize_export_row(rx):
    """一行导出数据。没有 created_by 的记录（患者自己提交）显示 'System'。"""
    creator = rx.created_by
    return {
        'id': str(rx.id),
        'patientName': rx.patient_name,
        'patientNationalId': rx.patient_national_id,
        'medicationName': rx.medication_name,
        'dosage': rx.dosage,
        'prescriptionType': rx.prescription_type,
        'status': rx.status,
        'deliveryMethod': rx.delivery_method,
        'createdAt': _iso(rx.created_at),
        'createdBy': (creator.get_full_name() or creator.get_username()) if creator else 'System',
        'observations': rx.observations,
        'rejectionReason': rx.rejection_reason,
    }
