# Re-export Beanie documents
from .identity import IdentityDoc
from .doctor import DoctorDoc
from .appointment import AppointmentDoc
