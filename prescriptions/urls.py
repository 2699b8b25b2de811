from django.urls import path

from .views import (
    MyPrescriptionsView,
    PatientPrescriptionsView,
    PrescriptionCollectionView,
    PrescriptionDetailView,
    PrescriptionExportView,
    PrescriptionLogView,
    PrescriptionRepeatView,
    PrescriptionStatsView,
    PrescriptionStatusView,
    PushSubscriptionView,
    StaffPrescriptionCreateView,
    StaffPrescriptionDetailView,
)

urlpatterns = [
    path('prescriptions', PrescriptionCollectionView.as_view(), name='prescription-collection'),
    path('prescriptions/me', MyPrescriptionsView.as_view(), name='prescription-mine'),
    path('prescriptions/stats', PrescriptionStatsView.as_view(), name='prescription-stats'),
    path('prescriptions/export', PrescriptionExportView.as_view(), name='prescription-export'),
    path('prescriptions/patient/<int:patient_id>', PatientPrescriptionsView.as_view(), name='prescription-patient'),
    path('prescriptions/admin', StaffPrescriptionCreateView.as_view(), name='prescription-staff-create'),
    path('prescriptions/admin/<uuid:prescription_id>', StaffPrescriptionDetailView.as_view(), name='prescription-staff-detail'),
    path('prescriptions/<uuid:prescription_id>', PrescriptionDetailView.as_view(), name='prescription-detail'),
    path('prescriptions/<uuid:prescription_id>/status', PrescriptionStatusView.as_view(), name='prescription-status'),
    path('prescriptions/<uuid:prescription_id>/log', PrescriptionLogView.as_view(), name='prescription-log'),
    path('prescriptions/<uuid:prescription_id>/repeat', PrescriptionRepeatView.as_view(), name='prescription-repeat'),
    path('notifications/subscription', PushSubscriptionView.as_view(), name='push-subscription'),
]
