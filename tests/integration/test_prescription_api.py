"""
Integration tests — 真实 HTTP 请求打到 DRF View，验证完整流程。

用 DRF APIClient（force_authenticate），走完：
  HTTP Request → urls.py → View → Intake → Service → ORM → DB → Response

Celery 在测试里是 eager 模式，通知同步执行：
email 走 locmem backend（mail.outbox），push 默认没有订阅。
"""
import csv
import io
import json
from unittest.mock import patch

import pytest
from django.core import mail

from prescriptions.models import ActivityLog, Prescription, PushSubscription
from prescriptions.status import PrescriptionStatus as S
from tests.conftest import VALID_CPF, PrescriptionFactory, PushSubscriptionFactory


# -------------------------------------------------------------------
# Helper
# -------------------------------------------------------------------

def call(client, method, url, payload=None, **params):
    """快捷方式：返回 (status_code, body_dict)。"""
    if method == 'get':
        response = client.get(url, params)
    else:
        response = getattr(client, method)(url, payload or {}, format='json')
    return response.status_code, json.loads(response.content)


def create(client, payload):
    return call(client, 'post', '/api/prescriptions', payload)


EMAIL_PAYLOAD = {
    'medicationName': 'Losartana 50mg',
    'dosage': '1 comprimido ao dia',
    'prescriptionType': 'branco',
    'deliveryMethod': 'email',
    'patientEmail': 'maria@example.com',
    'patientNationalId': '529.982.247-25',
    'patientPostalCode': '01310-100',
    'patientAddress': {'street': 'Rua das Flores', 'number': '123', 'city': 'São Paulo', 'state': 'SP'},
}


# ===================================================================
# Scenario: full lifecycle
# ===================================================================

@pytest.mark.django_db
class TestLifecycle:

    def test_patient_creates_email_prescription(self, client_for, patient):
        status, body = create(client_for(patient), EMAIL_PAYLOAD)

        assert status == 201
        assert body['success'] is True
        assert body['data']['status'] == 'requested'
        assert body['data']['deliveryMethod'] == 'email'
        assert 'internalNotes' not in body['data']

        rx_id = body['data']['id']
        assert ActivityLog.objects.filter(prescription_ref=rx_id, action='create').count() == 1
        # 确认通知已尝试发送
        assert len(mail.outbox) == 1
        assert mail.outbox[0].to == ['maria@example.com']
        assert 'received' in mail.outbox[0].subject

    def test_staff_moves_to_approved_then_ready(self, client_for, patient, staff):
        _, body = create(client_for(patient), EMAIL_PAYLOAD)
        rx_id = body['data']['id']

        client = client_for(staff)
        status, body = call(client, 'patch', f'/api/prescriptions/{rx_id}/status', {'status': 'approved'})
        assert status == 200
        status, body = call(client, 'patch', f'/api/prescriptions/{rx_id}/status', {'status': 'ready'})
        assert status == 200

        data = body['data']
        assert data['approvedAt'] is not None
        assert data['readyAt'] is not None
        assert data['approvedAt'] != data['readyAt']

        changes = ActivityLog.objects.filter(prescription_ref=rx_id, action='status_change').order_by('created_at', 'id')
        assert [e.metadata['to'] for e in changes] == ['approved', 'ready']

    def test_reject_reason_reaches_notification(self, client_for, staff):
        rx = PrescriptionFactory()

        status, body = call(client_for(staff), 'patch', f'/api/prescriptions/{rx.id}/status',
                            {'status': 'rejected', 'rejectionReason': 'stock unavailable'})

        assert status == 200
        assert body['data']['rejectionReason'] == 'stock unavailable'
        assert 'stock unavailable' in mail.outbox[-1].body

    def test_reject_without_reason(self, client_for, staff):
        rx = PrescriptionFactory()

        status, _ = call(client_for(staff), 'patch', f'/api/prescriptions/{rx.id}/status', {'status': 'rejected'})

        assert status == 200
        assert 'Reason: not specified' in mail.outbox[-1].body

    @patch('prescriptions.notifications.mailer.EmailMultiAlternatives.send', side_effect=OSError('smtp down'))
    def test_transport_failure_keeps_status(self, mock_send, client_for, staff, patient):
        rx = PrescriptionFactory(patient=patient)

        status, _ = call(client_for(staff), 'patch', f'/api/prescriptions/{rx.id}/status', {'status': 'approved'})
        assert status == 200

        status, body = call(client_for(patient), 'get', f'/api/prescriptions/{rx.id}')
        assert status == 200
        assert body['data']['status'] == 'approved'
        assert ActivityLog.objects.filter(prescription_ref=rx.id, action='notification_failed').exists()

    @patch('prescriptions.notifications.push.webpush')
    def test_push_sent_on_status_change(self, mock_webpush, client_for, staff):
        rx = PrescriptionFactory()
        PushSubscriptionFactory(user=rx.patient)

        call(client_for(staff), 'patch', f'/api/prescriptions/{rx.id}/status', {'status': 'approved'})

        mock_webpush.assert_called_once()


# ===================================================================
# Create errors
# ===================================================================

@pytest.mark.django_db
class TestCreateErrors:

    @pytest.mark.parametrize('missing', ['patientNationalId', 'patientPostalCode', 'patientAddress'])
    def test_email_delivery_requires_contact(self, missing, client_for, patient):
        patient.profile.national_id = None
        patient.profile.address = {}
        patient.profile.save()
        payload = {k: v for k, v in EMAIL_PAYLOAD.items() if k != missing}

        status, body = create(client_for(patient), payload)

        assert status == 400
        assert body['success'] is False
        assert body['type'] == 'validation_error'
        assert body['errorCode'] == 'MISSING_EMAIL_DATA'
        assert Prescription.objects.count() == 0

    def test_invalid_cpf_is_rejected_at_intake(self, client_for, patient):
        status, body = create(client_for(patient), {**EMAIL_PAYLOAD, 'patientNationalId': '111.111.111-11'})

        assert status == 400
        assert body['errorCode'] == 'VALIDATION_ERROR'
        assert body['detail']['errors'][0]['field'] == 'patientNationalId'

    def test_duplicate_within_window(self, client_for, patient, sample_request_payload):
        client = client_for(patient)
        create(client, sample_request_payload)

        status, body = create(client, sample_request_payload)

        assert status == 400
        assert body['errorCode'] == 'DUPLICATE_REQUEST'
        assert Prescription.objects.count() == 1

    def test_staff_cannot_use_patient_endpoint(self, client_for, staff, sample_request_payload):
        status, body = create(client_for(staff), sample_request_payload)

        assert status == 403
        assert body['errorCode'] == 'UNAUTHORIZED_ROLE'

    def test_anonymous_rejected(self, api_client, sample_request_payload):
        status, body = create(api_client, sample_request_payload)

        assert status in (401, 403)
        assert body['errorCode'] == 'NOT_AUTHENTICATED'

    def test_malformed_address(self, client_for, patient, sample_request_payload):
        status, body = create(client_for(patient), {**sample_request_payload, 'patientAddress': ['Rua A']})

        assert status == 400
        assert body['detail']['errors'][0]['field'] == 'patientAddress'

    @pytest.mark.parametrize('field,value', [
        ('patientEmail', 'a' * 250 + '@example.com'),
        ('patientAddress', 'Rua ' + 'A' * 600),
    ])
    def test_oversized_contact_field(self, field, value, client_for, patient, sample_request_payload):
        status, body = create(client_for(patient), {**sample_request_payload, field: value})

        assert status == 400
        assert body['errorCode'] == 'VALIDATION_ERROR'
        assert body['detail']['errors'][0]['field'] == field
        assert Prescription.objects.count() == 0


# ===================================================================
# Read / list
# ===================================================================

@pytest.mark.django_db
class TestReadAccess:

    def test_patient_cannot_read_others(self, client_for, patient, other_patient):
        rx = PrescriptionFactory(patient=other_patient)

        status, body = call(client_for(patient), 'get', f'/api/prescriptions/{rx.id}')

        assert status == 403
        assert body['type'] == 'forbidden'

    def test_unknown_id(self, client_for, staff):
        status, body = call(client_for(staff), 'get', '/api/prescriptions/00000000-0000-0000-0000-000000000000')

        assert status == 404
        assert body['errorCode'] == 'PRESCRIPTION_NOT_FOUND'

    def test_staff_sees_internal_notes(self, client_for, staff):
        rx = PrescriptionFactory(internal_notes='verificar estoque')

        _, body = call(client_for(staff), 'get', f'/api/prescriptions/{rx.id}')

        assert body['data']['internalNotes'] == 'verificar estoque'

    def test_pending_filter_maps_to_requested(self, client_for, staff):
        PrescriptionFactory(status=S.REQUESTED)
        PrescriptionFactory(status=S.APPROVED)
        PrescriptionFactory(status=S.SENT)

        status, body = call(client_for(staff), 'get', '/api/prescriptions', status='pending')

        assert status == 200
        assert body['total'] == 1
        assert [rx['status'] for rx in body['data']] == ['requested']

    def test_invalid_status_filter(self, client_for, staff):
        status, body = call(client_for(staff), 'get', '/api/prescriptions', status='archived')

        assert status == 400
        assert body['errorCode'] == 'INVALID_STATUS'

    def test_patient_cannot_list_all(self, client_for, patient):
        status, _ = call(client_for(patient), 'get', '/api/prescriptions')
        assert status == 403

    def test_my_prescriptions(self, client_for, patient, other_patient):
        PrescriptionFactory(patient=patient)
        PrescriptionFactory(patient=patient, medication_name='Metformina')
        PrescriptionFactory(patient=other_patient)

        status, body = call(client_for(patient), 'get', '/api/prescriptions/me', limit=1)

        assert status == 200
        assert body['count'] == 1
        assert body['total'] == 2
        assert body['pages'] == 2

    def test_stats(self, client_for, staff):
        PrescriptionFactory(status=S.REQUESTED)
        PrescriptionFactory(status=S.READY)

        status, body = call(client_for(staff), 'get', '/api/prescriptions/stats')

        assert status == 200
        assert body['data']['total'] == 2
        assert body['data']['byStatus'] == {'ready': 1, 'requested': 1}

    def test_calendar_invalid_date(self, client_for, staff):
        status, body = call(client_for(staff), 'get', '/api/prescriptions', startDate='2024-02-30')

        assert status == 400
        assert body['errorCode'] == 'VALIDATION_ERROR'
        assert body['detail'] == {'date': '2024-02-30'}

    def test_patient_prescriptions(self, client_for, staff, patient, other_patient):
        PrescriptionFactory(patient=patient, medication_name='Insulina')
        PrescriptionFactory(patient=patient)
        PrescriptionFactory(patient=other_patient, medication_name='Insulina')

        status, body = call(
            client_for(staff), 'get', f'/api/prescriptions/patient/{patient.id}', medicationName='INSUL',
        )

        assert status == 200
        assert body['total'] == 1
        assert body['data'][0]['patientId'] == patient.id

    def test_patient_prescriptions_unknown_patient(self, client_for, staff):
        status, body = call(client_for(staff), 'get', '/api/prescriptions/patient/999')

        assert status == 404
        assert body['errorCode'] == 'PATIENT_NOT_FOUND'

    def test_patient_prescriptions_staff_only(self, client_for, patient):
        status, _ = call(client_for(patient), 'get', f'/api/prescriptions/patient/{patient.id}')
        assert status == 403


@pytest.mark.django_db
class TestExport:

    def test_json_export(self, client_for, staff):
        PrescriptionFactory(status=S.APPROVED, created_by=staff)
        PrescriptionFactory(status=S.REQUESTED)

        status, body = call(client_for(staff), 'get', '/api/prescriptions/export', status='approved')

        assert status == 200
        assert body['success'] is True
        assert body['format'] == 'json'
        assert body['count'] == 1
        assert body['data'][0]['createdBy'] == 'Ana Silva'
        entry = ActivityLog.objects.get(action='export_prescriptions')
        assert entry.metadata['filters'] == {'status': 'approved'}

    def test_csv_export(self, client_for, staff):
        PrescriptionFactory(medication_name='Dipirona')

        response = client_for(staff).get('/api/prescriptions/export', {'format': 'csv'})

        assert response.status_code == 200
        assert response['Content-Type'].startswith('text/csv')
        rows = list(csv.DictReader(io.StringIO(response.content.decode())))
        assert len(rows) == 1
        assert rows[0]['medicationName'] == 'Dipirona'
        assert rows[0]['createdBy'] == 'System'

    def test_unknown_format(self, client_for, staff):
        status, body = call(client_for(staff), 'get', '/api/prescriptions/export', format='pdf')

        assert status == 400
        assert body['errorCode'] == 'VALIDATION_ERROR'

    def test_patient_cannot_export(self, client_for, patient):
        status, _ = call(client_for(patient), 'get', '/api/prescriptions/export')
        assert status == 403


# ===================================================================
# Status update errors
# ===================================================================

@pytest.mark.django_db
class TestStatusErrors:

    def test_unknown_status_leaves_record(self, client_for, staff):
        rx = PrescriptionFactory()

        status, body = call(client_for(staff), 'patch', f'/api/prescriptions/{rx.id}/status', {'status': 'archived'})

        assert status == 400
        assert body['errorCode'] == 'INVALID_STATUS'
        rx.refresh_from_db()
        assert rx.status == S.REQUESTED

    def test_missing_status(self, client_for, staff):
        rx = PrescriptionFactory()
        status, body = call(client_for(staff), 'patch', f'/api/prescriptions/{rx.id}/status', {})

        assert status == 400
        assert body['errorCode'] == 'INVALID_STATUS'

    def test_patient_cannot_change_status(self, client_for, patient):
        rx = PrescriptionFactory(patient=patient)

        status, _ = call(client_for(patient), 'patch', f'/api/prescriptions/{rx.id}/status', {'status': 'approved'})

        assert status == 403
        rx.refresh_from_db()
        assert rx.status == S.REQUESTED


# ===================================================================
# Staff management
# ===================================================================

@pytest.mark.django_db
class TestStaffManagement:

    def test_staff_create_for_patient(self, client_for, staff, patient):
        status, body = call(client_for(staff), 'post', '/api/prescriptions/admin', {
            'patientNationalId': VALID_CPF,
            'medicationName': 'Clonazepam 2mg',
            'dosage': '1 à noite',
            'prescriptionType': 'azul',
        })

        assert status == 201
        assert body['data']['status'] == 'approved'
        assert body['data']['patientId'] == patient.id
        assert body['data']['approvedAt'] is not None

    def test_staff_edit(self, client_for, staff):
        rx = PrescriptionFactory()

        status, body = call(client_for(staff), 'put', f'/api/prescriptions/admin/{rx.id}',
                            {'numberOfBoxes': 3, 'internalNotes': 'renovação'})

        assert status == 200
        assert body['data']['numberOfBoxes'] == 3
        assert body['data']['internalNotes'] == 'renovação'

    def test_repeat(self, client_for, staff):
        rx = PrescriptionFactory(status=S.SENT)

        status, body = call(client_for(staff), 'post', f'/api/prescriptions/{rx.id}/repeat')

        assert status == 201
        assert body['data']['id'] != str(rx.id)
        assert body['data']['status'] == 'requested'

    def test_only_admin_deletes(self, client_for, staff, admin):
        rx = PrescriptionFactory()

        status, _ = call(client_for(staff), 'delete', f'/api/prescriptions/admin/{rx.id}')
        assert status == 403

        status, body = call(client_for(admin), 'delete', f'/api/prescriptions/admin/{rx.id}')
        assert status == 200
        assert body['data']['id'] == str(rx.id)
        assert not Prescription.objects.filter(pk=rx.id).exists()

    def test_history_survives_delete(self, client_for, staff, admin):
        rx = PrescriptionFactory()
        call(client_for(staff), 'patch', f'/api/prescriptions/{rx.id}/status', {'status': 'approved'})
        call(client_for(admin), 'delete', f'/api/prescriptions/admin/{rx.id}')

        status, body = call(client_for(staff), 'get', f'/api/prescriptions/{rx.id}/log')

        assert status == 200
        actions = [entry['action'] for entry in body['data']]
        assert actions[0] == 'status_change'
        assert actions[-1] == 'delete'

    def test_owner_reads_log(self, client_for, patient, sample_request_payload):
        client = client_for(patient)
        _, body = create(client, sample_request_payload)

        status, body = call(client, 'get', f"/api/prescriptions/{body['data']['id']}/log")

        assert status == 200
        assert body['data'][0]['action'] == 'create'


# ===================================================================
# Push subscriptions
# ===================================================================

@pytest.mark.django_db
class TestPushSubscription:

    SUBSCRIPTION = {
        'endpoint': 'https://fcm.googleapis.com/fcm/send/abc123',
        'keys': {'p256dh': 'BNcRdreALRFX', 'auth': 'tBHItJI5svbp'},
    }

    def test_register_and_remove(self, client_for, patient):
        client = client_for(patient)

        status, _ = call(client, 'post', '/api/notifications/subscription', self.SUBSCRIPTION)
        assert status == 201
        # 重复注册同一 endpoint 只更新
        call(client, 'post', '/api/notifications/subscription', self.SUBSCRIPTION)
        assert PushSubscription.objects.filter(user=patient).count() == 1

        status, body = call(client, 'delete', '/api/notifications/subscription',
                            {'endpoint': self.SUBSCRIPTION['endpoint']})
        assert status == 200
        assert body['data']['removed'] == 1

    def test_invalid_subscription(self, client_for, patient):
        status, body = call(client_for(patient), 'post', '/api/notifications/subscription', {'endpoint': 'x'})

        assert status == 400
        assert body['errorCode'] == 'INVALID_SUBSCRIPTION'
