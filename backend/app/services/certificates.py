"""Certificate generation for the `certificate_generation` job type."""
import asyncio
import logging
import secrets
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.attendance import STAGE_CERTIFICATE_GENERATED
from app.models.certificate import Certificate, CertificateCounter, CertificateTemplate
from app.schemas.job import CertificateGenerationPayload
from app.services.certificate_renderer import (
    CertificateContent,
    CertificateLayout,
    render_certificate,
)
from app.services.file_storage import file_storage
from app.services.notifications import create_notification
from app.services.workflow import advance_workflow
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class TemplateNotFoundError(Exception):
    pass


def _certificate_data(cert: Certificate, duplicate: bool = False) -> dict:
    data = {
        "certificate_id": str(cert.id),
        "certificate_number": cert.certificate_number,
        "pdf_path": cert.pdf_path,
        "png_path": cert.png_path,
    }
    if duplicate:
        data["duplicate"] = True
    return data


async def _resolve_template(
    db: AsyncSession, payload: CertificateGenerationPayload
) -> tuple[CertificateLayout, Optional[str], Optional[uuid.UUID]]:
    """(layout, cert_id_prefix, template_id). The inline override wins."""
    if payload.template is not None:
        t = payload.template
        template_id = None
        prefix = t.cert_id_prefix
    elif payload.event_id is not None:
        result = await db.execute(
            select(CertificateTemplate).where(
                CertificateTemplate.event_id == payload.event_id,
                CertificateTemplate.is_active.is_(True),
            )
        )
        t = result.scalar_one_or_none()
        if t is None:
            raise TemplateNotFoundError(f"No active certificate template for event {payload.event_id}")
        template_id = t.id
        prefix = t.cert_id_prefix
    else:
        raise TemplateNotFoundError("A standalone certificate needs an inline template")

    layout = CertificateLayout(
        width=t.width or settings.CERTIFICATE_DEFAULT_WIDTH,
        height=t.height or settings.CERTIFICATE_DEFAULT_HEIGHT,
        title=t.title,
        text_color=t.text_color,
        accent_color=t.accent_color,
        background_path=t.background_path,
    )
    return layout, prefix, template_id


async def next_certificate_sequence(db: AsyncSession, scope: str) -> int:
    """Atomically bump the counter for `scope` and return the new value."""
    dialect = db.get_bind().dialect.name
    insert = _UPSERT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Certificate counters are not supported on {dialect}")
    stmt = (
        insert(CertificateCounter)
        .values(scope=scope, value=1)
        .on_conflict_do_update(
            index_elements=[CertificateCounter.scope],
            set_={"value": CertificateCounter.value + 1},
        )
        .returning(CertificateCounter.value)
    )
    return (await db.execute(stmt)).scalar_one()


async def allocate_certificate_number(
    db: AsyncSession, prefix: Optional[str], event_id: Optional[uuid.UUID]
) -> str:
    if prefix:
        scope = str(event_id) if event_id else f"standalone:{prefix}"
        value = await next_certificate_sequence(db, scope)
        return f"{prefix}-{value:03d}"
    return f"CERT-{utcnow():%Y%m%d}-{secrets.token_hex(4).upper()}"


async def find_certificate(
    db: AsyncSession, event_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[Certificate]:
    result = await db.execute(
        select(Certificate).where(Certificate.event_id == event_id, Certificate.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def find_certificate_by_number(db: AsyncSession, certificate_number: str) -> Optional[Certificate]:
    """Public lookup used to verify a printed or scanned certificate number."""
    result = await db.execute(
        select(Certificate).where(Certificate.certificate_number == certificate_number.strip())
    )
    return result.scalar_one_or_none()


async def generate_certificate(
    payload: CertificateGenerationPayload, session_factory: async_sessionmaker
) -> dict:
    """Render, store and record one certificate.

    Redelivery of the same (event, user) job returns the stored certificate
    with `duplicate: true` instead of minting a new number.
    """
    async with session_factory() as db:
        if payload.event_id is not None:
            existing = await find_certificate(db, payload.event_id, payload.user_id)
            if existing is not None:
                logger.info(
                    f"Certificate {existing.certificate_number} already exists for "
                    f"user {payload.user_id} / event {payload.event_id}"
                )
                return _certificate_data(existing, duplicate=True)

        layout, prefix, template_id = await _resolve_template(db, payload)
        number = await allocate_certificate_number(db, prefix, payload.event_id)
        content = CertificateContent(
            participant_name=payload.participant_name,
            event_title=payload.event_title,
            completion_date=payload.completion_date,
            certificate_number=number,
        )
        png_bytes, pdf_bytes = await asyncio.to_thread(render_certificate, layout, content)

        folder = f"certificates/{payload.event_id or 'standalone'}"
        written = []
        try:
            png_path = await file_storage.save(png_bytes, f"{number}.png", folder)
            written.append(png_path)
            pdf_path = await file_storage.save(pdf_bytes, f"{number}.pdf", folder)
            written.append(pdf_path)

            cert = Certificate(
                event_id=payload.event_id,
                user_id=payload.user_id,
                template_id=template_id,
                certificate_number=number,
                participant_name=payload.participant_name,
                event_title=payload.event_title,
                completion_date=payload.completion_date,
                pdf_path=pdf_path,
                png_path=png_path,
            )
            db.add(cert)
            await db.flush()

            if payload.event_id is not None:
                await advance_workflow(
                    db, payload.user_id, payload.event_id, STAGE_CERTIFICATE_GENERATED,
                    certificate_id=cert.id,
                    metadata={"certificate_number": number},
                )
            create_notification(
                db, payload.user_id,
                "Certificate Ready",
                f"Your certificate for {payload.event_title} is ready to download.",
                type="success",
            )
            await db.commit()
        except Exception:
            await db.rollback()
            for path in written:
                await file_storage.delete(path)
            raise

        logger.info(f"Generated certificate {number} for user {payload.user_id}")
        return _certificate_data(cert)
