from .address import parse_address
from .requests import PatientRequestIntake, StaffRequestIntake, StatusUpdateIntake
from .types import Address, PrescriptionRequest, StatusUpdate

__all__ = [
    'Address',
    'PatientRequestIntake',
    'PrescriptionRequest',
    'StaffRequestIntake',
    'StatusUpdate',
    'StatusUpdateIntake',
    'parse_address',
]
