"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
"""
import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

import factory
from prescriptions.models import (
    ActivityLog,
    DeliveryMethod,
    Prescription,
    PrescriptionType,
    PushSubscription,
    Role,
    UserProfile,
)
from prescriptions.status import PrescriptionStatus

# 校验位正确的 CPF
VALID_CPF = '52998224725'
OTHER_VALID_CPF = '11144477735'


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = get_user_model()
        django_get_or_create = ('username',)

    username = factory.Sequence(lambda n: f'user{n}')
    first_name = 'Maria'
    last_name = 'Silva'
    email = factory.LazyAttribute(lambda u: f'{u.username}@example.com')
    password = factory.django.Password('secret')


class UserProfileFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = UserProfile

    user = factory.SubFactory(UserFactory)
    role = Role.PATIENT
    national_id = None
    phone = '11987654321'
    address = factory.LazyFunction(lambda: {
        'street': 'Rua das Flores',
        'number': '123',
        'neighborhood': 'Centro',
        'city': 'São Paulo',
        'state': 'SP',
        'postal_code': '01310100',
    })


class PrescriptionFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Prescription

    patient = factory.SubFactory(UserFactory)
    medication_name = 'Losartana 50mg'
    dosage = '1 comprimido ao dia'
    prescription_type = PrescriptionType.BRANCO
    delivery_method = DeliveryMethod.CLINIC
    status = PrescriptionStatus.REQUESTED
    patient_name = factory.LazyAttribute(lambda rx: rx.patient.get_full_name())
    patient_email = factory.LazyAttribute(lambda rx: rx.patient.email)


class ActivityLogFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ActivityLog

    actor = factory.SubFactory(UserFactory)
    action = 'create'
    details = 'Prescription requested'
    metadata = factory.LazyFunction(dict)


class PushSubscriptionFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PushSubscription

    user = factory.SubFactory(UserFactory)
    endpoint = factory.Sequence(lambda n: f'https://push.example.com/send/{n}')
    p256dh = 'BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM'
    auth = 'tBHItJI5svbpez7KI4CCXg'


def make_user(role, **kwargs):
    profile_kwargs = {key: kwargs.pop(key) for key in ('national_id', 'phone', 'address') if key in kwargs}
    user = UserFactory(**kwargs)
    UserProfileFactory(user=user, role=role, **profile_kwargs)
    return user


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def api_client():
    """DRF test client for integration tests."""
    return APIClient()


@pytest.fixture
def patient(db):
    return make_user(Role.PATIENT, username='patient', national_id=VALID_CPF)


@pytest.fixture
def other_patient(db):
    return make_user(Role.PATIENT, username='other', first_name='João', national_id=OTHER_VALID_CPF)


@pytest.fixture
def staff(db):
    return make_user(Role.STAFF, username='staff', first_name='Ana')


@pytest.fixture
def admin(db):
    return make_user(Role.ADMIN, username='admin', first_name='Carlos')


@pytest.fixture
def client_for(api_client):
    """client_for(user) → 已登录的 APIClient。"""
    def _login(user):
        api_client.force_authenticate(user=user)
        return api_client
    return _login


@pytest.fixture
def sample_request_payload():
    """Minimal valid payload for POST /api/prescriptions."""
    return {
        'medicationName': 'Losartana 50mg',
        'dosage': '1 comprimido ao dia',
        'prescriptionType': 'branco',
        'deliveryMethod': 'clinic',
    }
