# application/use_cases/process_mail_usecase.py
from __future__ import annotations
import email.message
import email.utils
import logging
import re
import uuid
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pyzmail

from domain.errors import ParseError, PersistenceError
from domain.models import NO_SUBJECT, ExtractionResult, MailRecord, ProcessingOutcome
from infrastructure.email.mime_extractor import MimeExtractor
from infrastructure.filesystem.storage import AttachmentStorage
from infrastructure.persistence.mail_repository import MailRepository

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def short_id(message_id: str, keep: int = 6) -> str:
    """Prefijo acotado del message_id para los logs (nunca el identificador completo)."""
    return f"{message_id[:keep]}…" if len(message_id) > keep else message_id


def extract_message_id(message: email.message.Message) -> str:
    raw = message.get("Message-ID") or ""
    cleaned = _NON_ALNUM.sub("", str(raw))
    return cleaned or uuid.uuid4().hex


def extract_sender(message: pyzmail.PyzMessage) -> str:
    addresses = message.get_addresses("from")
    return addresses[0][1] if addresses else ""


def received_at(message: email.message.Message, tz_name: str = "") -> datetime:
    """Fecha de envío en hora local (naive); ahora si falta o es ilegible."""
    sent: datetime | None = None
    raw = message.get("Date")
    if raw:
        try:
            sent = email.utils.parsedate_to_datetime(str(raw))
        except (TypeError, ValueError):
            logger.warning("Cabecera Date ilegible: %r", raw)
    if sent is None:
        return datetime.now()
    if sent.tzinfo is None:
        return sent
    try:
        local = sent.astimezone(ZoneInfo(tz_name)) if tz_name else sent.astimezone()
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Zona horaria desconocida %r; se usa la local del sistema", tz_name)
        local = sent.astimezone()
    return local.replace(tzinfo=None)


class Deduper:
    def __init__(self, repository: MailRepository) -> None:
        self.repository = repository

    def is_processed(self, message_id: str) -> bool:
        return bool(self.repository.find_by_message_id(message_id))


class ProcessMailUseCase:
    """
    Deduplicación → extracción MIME → escritura de adjuntos → un registro por cuerpo/adjunto.
    Nunca lanza por errores del propio correo: devuelve ProcessingOutcome.
    """

    def __init__(
        self,
        *,
        repository: MailRepository,
        extractor: MimeExtractor | None = None,
        storage: AttachmentStorage | None = None,
        tz_name: str = "",
    ) -> None:
        self.repository = repository
        self.deduper = Deduper(repository)
        self.extractor = extractor or MimeExtractor()
        self.storage = storage or AttachmentStorage()
        self.tz_name = tz_name

    def process_mail(self, message: pyzmail.PyzMessage, target_dir: Path) -> ProcessingOutcome:
        message_id = extract_message_id(message)
        status = "STARTED"
        self._log_status(status, message_id)
        saved = 0
        try:
            if self.deduper.is_processed(message_id):
                status = "DUPLICATE"
                return ProcessingOutcome.duplicate(message_id)

            status = "PROCESSING"
            self._log_status(status, message_id)

            extraction = self.extractor.extract(message)
            paths = self._write_attachments(extraction, target_dir, message_id)

            sender = extract_sender(message)
            subject = self._subject(message)
            when = received_at(message, self.tz_name)

            records = [MailRecord(sender=sender, subject=subject or NO_SUBJECT, message_id=message_id,
                                  received_at=when, body=extraction.body)]
            records += [
                MailRecord(sender=sender, subject=subject or NO_SUBJECT, message_id=message_id,
                           received_at=when, attachments_path=p)
                for p in paths
            ]
            for record in records:
                self.repository.save(record)
                saved += 1

            status = "COMPLETED"
            return ProcessingOutcome.completed(message_id, saved)

        except ParseError as exc:
            status = "FAILED"
            logger.error("Estructura MIME no válida en %s: %s", short_id(message_id), exc)
            return ProcessingOutcome.failed(message_id, f"parse: {exc}", saved)
        except PersistenceError as exc:
            status = "FAILED"
            logger.error("Error de base de datos en %s: %s", short_id(message_id), exc)
            return ProcessingOutcome.failed(message_id, f"persistence: {exc}", saved)
        except (OSError, ValueError) as exc:
            status = "FAILED"
            logger.error("Error escribiendo adjuntos de %s: %s", short_id(message_id), exc)
            return ProcessingOutcome.failed(message_id, f"filesystem: {exc}", saved)
        finally:
            self._log_status(status, message_id)

    # ───────── helpers ─────────
    def _write_attachments(self, extraction: ExtractionResult, target_dir: Path, message_id: str) -> list[str]:
        if not extraction.attachments:
            return []
        folder = self.storage.message_directory(target_dir, message_id)
        return [self.storage.save_bytes(folder, att.filename, att.content) for att in extraction.attachments]

    @staticmethod
    def _subject(message: pyzmail.PyzMessage) -> str:
        return message.get_subject() or ""

    @staticmethod
    def _log_status(status: str, message_id: str) -> None:
        if status == "STARTED":
            logger.debug("%s | ID: %s", status, short_id(message_id))
        elif status == "FAILED":
            logger.warning("%s | ID: %s", status, short_id(message_id))
        else:
            logger.info("%s | ID: %s", status, short_id(message_id))
