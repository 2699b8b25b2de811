"""
Unit tests for response serializers.
"""
import pytest

from prescriptions import activity
from prescriptions.serializers import (
    envelope,
    serialize_activity,
    serialize_page,
    serialize_prescription,
)
from prescriptions.services import PageResult
from tests.conftest import PrescriptionFactory


def test_envelope():
    assert envelope([1], message='ok', count=1) == {'success': True, 'data': [1], 'message': 'ok', 'count': 1}
    assert envelope({'id': 1}) == {'success': True, 'data': {'id': 1}}


@pytest.mark.django_db
class TestSerializePrescription:

    def test_camel_case_fields(self):
        rx = PrescriptionFactory(number_of_boxes=2, return_requested=True)
        data = serialize_prescription(rx)

        assert data['id'] == str(rx.id)
        assert data['medicationName'] == 'Losartana 50mg'
        assert data['numberOfBoxes'] == 2
        assert data['returnRequested'] is True
        assert data['status'] == 'requested'
        assert data['approvedAt'] is None
        assert data['createdAt'] == rx.created_at.isoformat()

    def test_internal_fields_only_for_staff(self, staff):
        rx = PrescriptionFactory(internal_notes='call the patient', created_by=staff)

        assert 'internalNotes' not in serialize_prescription(rx)
        data = serialize_prescription(rx, include_internal=True)
        assert data['internalNotes'] == 'call the patient'
        assert data['createdBy'] == staff.pk

    def test_page(self):
        items = [PrescriptionFactory() for _ in range(2)]
        body = serialize_page(PageResult(items=items, total=5, page=1, limit=2))

        assert body['success'] is True
        assert body['count'] == 2
        assert body['total'] == 5
        assert body['pages'] == 3
        assert len(body['data']) == 2

    def test_empty_page(self):
        body = serialize_page(PageResult(items=[], total=0, page=1, limit=20))
        assert body['pages'] == 0
        assert body['data'] == []


@pytest.mark.django_db
def test_serialize_activity(staff):
    rx = PrescriptionFactory()
    entry = activity.record(staff, activity.Action.STATUS_CHANGE, 'Status changed', prescription=rx,
                            metadata={'from': 'requested', 'to': 'approved'})

    data = serialize_activity(entry)

    assert data['action'] == 'status_change'
    assert data['prescriptionId'] == str(rx.id)
    assert data['actor'] == {'id': staff.pk, 'name': 'Ana Silva'}
    assert data['metadata']['to'] == 'approved'
