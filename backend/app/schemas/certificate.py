"""Public certificate verification schema."""
from datetime import date
from app.schemas.base import CamelORMModel


class CertificateVerification(CamelORMModel):
    """What anyone holding a certificate number may see. No user ids or file paths."""
    certificate_number: str
    participant_name: str
    event_title: str
    completion_date: date
