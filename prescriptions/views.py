"""
HTTP 层。

View 只做三件事：Intake 解析请求 → 调 services → serializers 输出。
异常一律不在这里 catch，由 unified_exception_handler 统一格式化。
"""

import csv

from django.http import HttpResponse, JsonResponse
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from . import services
from .intake import PatientRequestIntake, StaffRequestIntake, StatusUpdateIntake
from .permissions import IsAdminRole, IsPatient, IsStaffOrAdmin, is_staff_role
from .serializers import (
    EXPORT_COLUMNS,
    envelope,
    serialize_activity,
    serialize_export_row,
    serialize_page,
    serialize_prescription,
    serialize_push_subscription,
    serialize_stats,
)


class PrescriptionCollectionView(APIView):
    """
    POST /api/prescriptions  — patient submits a request
    GET  /api/prescriptions  — staff list with filters
    """

    def get_permissions(self):
        if self.request.method == 'POST':
            return [IsAuthenticated(), IsPatient()]
        return [IsAuthenticated(), IsStaffOrAdmin()]

    def post(self, request):
        req = PatientRequestIntake(request.data).process()
        rx = services.create_prescription(request.user, req)
        return JsonResponse(
            envelope(serialize_prescription(rx), message='Prescription request received'),
            status=201,
        )

    def get(self, request):
        page = services.list_prescriptions(request.user, request.query_params)
        return JsonResponse(serialize_page(page, include_internal=True))


class MyPrescriptionsView(APIView):
    """GET /api/prescriptions/me"""

    def get(self, request):
        page = services.list_prescriptions(request.user, request.query_params, own_only=True)
        return JsonResponse(serialize_page(page))


class PatientPrescriptionsView(APIView):
    """GET /api/prescriptions/patient/<patient_id> — staff view of one patient"""

    permission_classes = [IsAuthenticated, IsStaffOrAdmin]

    def get(self, request, patient_id):
        page = services.list_patient_prescriptions(request.user, patient_id, request.query_params)
        return JsonResponse(serialize_page(page, include_internal=True))


class PrescriptionExportView(APIView):
    """
    GET /api/prescriptions/export?format=json|csv

    过滤参数和列表接口一致，不分页。
    """

    permission_classes = [IsAuthenticated, IsStaffOrAdmin]

    def get(self, request):
        fmt, items = services.export_prescriptions(request.user, request.query_params)
        rows = [serialize_export_row(rx) for rx in items]
        if fmt == 'csv':
            response = HttpResponse(content_type='text/csv; charset=utf-8')
            response['Content-Disposition'] = 'attachment; filename="prescriptions.csv"'
            writer = csv.DictWriter(response, fieldnames=EXPORT_COLUMNS)
            writer.writeheader()
            writer.writerows(rows)
            return response
        return JsonResponse(envelope(
            rows,
            message=f"{len(rows)} prescriptions exported",
            format=fmt,
            count=len(rows),
        ))


class PrescriptionStatsView(APIView):
    permission_classes = [IsAuthenticated, IsStaffOrAdmin]

    def get(self, request):
        return JsonResponse(envelope(serialize_stats(services.prescription_stats())))


class PrescriptionDetailView(APIView):
    """GET /api/prescriptions/<id> — owner or staff"""

    def get(self, request, prescription_id):
        rx = services.get_prescription(prescription_id, request.user)
        return JsonResponse(envelope(serialize_prescription(rx, is_staff_role(request.user))))


class PrescriptionStatusView(APIView):
    permission_classes = [IsAuthenticated, IsStaffOrAdmin]

    def patch(self, request, prescription_id):
        update = StatusUpdateIntake(request.data).process()
        rx = services.update_status(
            prescription_id,
            update.status,
            request.user,
            internal_notes=update.internal_notes,
            rejection_reason=update.rejection_reason,
        )
        return JsonResponse(
            envelope(serialize_prescription(rx, include_internal=True), message='Status updated'),
        )


class PrescriptionLogView(APIView):
    """GET /api/prescriptions/<id>/log"""

    def get(self, request, prescription_id):
        entries = services.prescription_history(prescription_id, request.user)
        data = [serialize_activity(entry) for entry in entries]
        return JsonResponse(envelope(data, count=len(data)))


class PrescriptionRepeatView(APIView):
    permission_classes = [IsAuthenticated, IsStaffOrAdmin]

    def post(self, request, prescription_id):
        rx = services.repeat_prescription(prescription_id, request.user)
        return JsonResponse(
            envelope(serialize_prescription(rx, include_internal=True), message='Prescription repeated'),
            status=201,
        )


class StaffPrescriptionCreateView(APIView):
    """POST /api/prescriptions/admin — staff creates on behalf of a patient"""

    permission_classes = [IsAuthenticated, IsStaffOrAdmin]

    def post(self, request):
        req = StaffRequestIntake(request.data).process()
        rx = services.manage_as_staff(request.user, req)
        return JsonResponse(
            envelope(serialize_prescription(rx, include_internal=True), message='Prescription created'),
            status=201,
        )


class StaffPrescriptionDetailView(APIView):
    """
    PUT    /api/prescriptions/admin/<id> — staff edit (partial fields allowed)
    DELETE /api/prescriptions/admin/<id> — admin only
    """

    def get_permissions(self):
        if self.request.method == 'DELETE':
            return [IsAuthenticated(), IsAdminRole()]
        return [IsAuthenticated(), IsStaffOrAdmin()]

    def put(self, request, prescription_id):
        req = StaffRequestIntake(request.data, partial=True).process()
        rx = services.manage_as_staff(request.user, req, prescription_id=prescription_id)
        return JsonResponse(
            envelope(serialize_prescription(rx, include_internal=True), message='Prescription updated'),
        )

    def delete(self, request, prescription_id):
        deleted_id = services.delete_prescription(prescription_id, request.user)
        return JsonResponse(envelope({'id': str(deleted_id)}, message='Prescription deleted'))


class PushSubscriptionView(APIView):
    """POST / DELETE /api/notifications/subscription"""

    def post(self, request):
        subscription = services.save_push_subscription(
            request.user, request.data, request.META.get('HTTP_USER_AGENT', ''),
        )
        return JsonResponse(
            envelope(serialize_push_subscription(subscription), message='Subscription saved'),
            status=201,
        )

    def delete(self, request):
        endpoint = request.data.get('endpoint') if hasattr(request.data, 'get') else None
        removed = services.remove_push_subscription(request.user, endpoint)
        return JsonResponse(envelope({'removed': removed}, message='Subscription removed'))
