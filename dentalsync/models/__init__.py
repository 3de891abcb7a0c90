from .patient import Patient
from .dentist import Dentist
from .consultation import Consultation
from .tooth_diagnosis import ToothDiagnosis
from .appointment import Appointment, AppointmentTooth
from .treatment import Treatment
from .audit_log import AuditLog

__all__ = ["Patient", "Dentist", "Consultation", "ToothDiagnosis", "Appointment", "AppointmentTooth", "Treatment", "AuditLog"]
