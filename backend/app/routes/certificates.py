"""Certificates API - public verification by certificate number."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.certificate import CertificateVerification
from app.services.certificates import find_certificate_by_number

router = APIRouter(prefix="/api/certificates", tags=["certificates"])


@router.get("/verify/{certificate_number}", response_model=CertificateVerification)
async def verify_certificate(certificate_number: str, db: AsyncSession = Depends(get_db)):
    """No identity headers required: the number printed on the certificate is the key."""
    cert = await find_certificate_by_number(db, certificate_number)
    if not cert:
        raise HTTPException(404, "Certificate not found")
    return cert
