"""Import all models so SQLAlchemy metadata knows about them."""
from app.models.base import Base
from app.models.event import Event, Registration
from app.models.credential import Credential, CredentialScan
from app.models.attendance import AttendanceRecord, AttendanceWorkflow
from app.models.survey import Survey, SurveyResponse
from app.models.certificate import CertificateTemplate, Certificate, CertificateCounter
from app.models.notification import Notification
from app.models.job import Job

__all__ = [
    "Base",
    "Event", "Registration", "Credential", "CredentialScan",
    "AttendanceRecord", "AttendanceWorkflow", "Survey", "SurveyResponse",
    "CertificateTemplate", "Certificate", "CertificateCounter",
    "Notification", "Job",
]
