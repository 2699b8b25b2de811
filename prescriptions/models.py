import uuid

from django.conf import settings
from django.db import models

from .status import PrescriptionStatus


class Role(models.TextChoices):
    PATIENT = 'patient', 'Patient'
    STAFF = 'staff', 'Staff'
    ADMIN = 'admin', 'Admin'


class PrescriptionType(models.TextChoices):
    # 三种受监管的纸质处方笺
    BRANCO = 'branco', 'White form'
    AZUL = 'azul', 'Blue form'
    AMARELO = 'amarelo', 'Yellow form'


class DeliveryMethod(models.TextChoices):
    EMAIL = 'email', 'Email'
    CLINIC = 'clinic', 'Pickup at clinic'


class UserProfile(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='profile',
    )
    role = models.CharField(max_length=10, choices=Role.choices, default=Role.PATIENT)
    national_id = models.CharField(max_length=11, unique=True, blank=True, null=True)
    phone = models.CharField(max_length=20, blank=True, default='')
    address = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'user_profiles'


class Prescription(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='prescriptions',
    )
    medication_name = models.CharField(max_length=200)
    dosage = models.CharField(max_length=200, blank=True, default='')
    number_of_boxes = models.PositiveSmallIntegerField(default=1)
    return_requested = models.BooleanField(default=False)
    prescription_type = models.CharField(max_length=10, choices=PrescriptionType.choices)
    delivery_method = models.CharField(
        max_length=10, choices=DeliveryMethod.choices, default=DeliveryMethod.CLINIC,
    )
    status = models.CharField(
        max_length=20, choices=PrescriptionStatus.choices, default=PrescriptionStatus.REQUESTED,
    )

    # 创建时从患者资料拷贝的快照，之后患者改资料不影响历史处方
    patient_name = models.CharField(max_length=200, blank=True, default='')
    patient_email = models.EmailField(blank=True, default='')
    patient_national_id = models.CharField(max_length=11, blank=True, default='')
    patient_phone = models.CharField(max_length=20, blank=True, default='')
    patient_postal_code = models.CharField(max_length=8, blank=True, default='')
    patient_address = models.CharField(max_length=500, blank=True, default='')

    observations = models.TextField(blank=True, default='')
    internal_notes = models.TextField(blank=True, default='')
    rejection_reason = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    approved_at = models.DateTimeField(blank=True, null=True)
    ready_at = models.DateTimeField(blank=True, null=True)
    sent_at = models.DateTimeField(blank=True, null=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+',
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='+',
    )

    class Meta:
        db_table = 'prescriptions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['patient', '-created_at'], name='rx_patient_created_idx'),
            models.Index(fields=['status', '-created_at'], name='rx_status_created_idx'),
        ]


class ActivityLog(models.Model):
    """Append-only audit entry. Never updated or deleted by the workflow."""

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='activity_logs',
    )
    action = models.CharField(max_length=50, db_index=True)
    details = models.TextField()
    # 不用外键：处方被硬删除后审计记录仍然保留
    prescription_ref = models.UUIDField(blank=True, null=True, db_index=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = 'activity_logs'
        ordering = ['created_at', 'id']


class PushSubscription(models.Model):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='push_subscriptions',
    )
    endpoint = models.URLField(max_length=500, unique=True)
    p256dh = models.CharField(max_length=200)
    auth = models.CharField(max_length=100)
    user_agent = models.CharField(max_length=300, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'push_subscriptions'

    def as_subscription_info(self):
        return {
            'endpoint': self.endpoint,
            'keys': {'p256dh': self.p256dh, 'auth': self.auth},
        }
