# application/services/quarantine.py
from __future__ import annotations
import logging
import uuid
from pathlib import Path

from infrastructure.email.mime_extractor import MimeExtractor
from infrastructure.filesystem.storage import AttachmentStorage

logger = logging.getLogger(__name__)


class QuarantineHandler:
    """
    Copia de recuperación de un correo fallido en FAILED_MESSAGES_DIRECTORY/<message_id>/:
      - message.eml   → bytes originales
      - failure.log   → motivo + log capturado durante el proceso
      - adjuntos y <prefijo>_body.txt → repetición de extracción+escritura (sin BD)
    Todo es best-effort: los errores se registran y nunca se propagan.
    """

    def __init__(
        self,
        *,
        failed_dir: Path,
        extractor: MimeExtractor | None = None,
        storage: AttachmentStorage | None = None,
    ) -> None:
        self.failed_dir = failed_dir
        self.extractor = extractor or MimeExtractor()
        self.storage = storage or AttachmentStorage()

    def quarantine(self, raw: bytes, *, message_id: str = "", reason: str = "", log_text: str = "") -> Path | None:
        try:
            folder = self.storage.message_directory(self.failed_dir, message_id or uuid.uuid4().hex)
        except (OSError, ValueError):
            logger.exception("No se pudo crear la carpeta de cuarentena")
            return None

        self._save(folder, "message.eml", raw)
        report = f"{reason or 'error desconocido'}\n\n{log_text}".rstrip() + "\n"
        self._save(folder, "failure.log", report.encode("utf-8"))

        try:
            message = self.extractor.parse(raw)
            extraction = self.extractor.extract(message)
        except Exception:
            logger.exception("Cuarentena: no se pudo extraer el contenido del correo")
            return folder

        if extraction.body:
            self._save(folder, f"{extraction.prefix}_body.txt", extraction.body.encode("utf-8"))
        for att in extraction.attachments:
            self._save(folder, att.filename, att.content)

        logger.info("Correo en cuarentena: %s", folder)
        return folder

    def _save(self, folder: Path, name: str, data: bytes) -> None:
        try:
            self.storage.save_bytes(folder, name, data)
        except (OSError, ValueError):
            logger.exception("Cuarentena: no se pudo escribir %s", name)
