# interface_adapters/controllers/polling_controller.py
from __future__ import annotations
import logging

from config.settings import Settings
from application.services.quarantine import QuarantineHandler
from application.use_cases.process_mail_usecase import ProcessMailUseCase, short_id
from domain.errors import MailIngestError
from domain.models import MailboxMessage, ProcessingOutcome
from infrastructure.email.mime_extractor import MimeExtractor
from infrastructure.email.pop3_client import POP3Inbox
from infrastructure.filesystem.storage import AttachmentStorage
from infrastructure.persistence.mail_repository import MailRepository
from utils.log_capture import MailRunLogCapture

logger = logging.getLogger(__name__)


class PollingController:
    """Un ciclo: conectar → listar → procesar del más reciente al más antiguo → cerrar."""

    def __init__(
        self,
        settings: Settings,
        repository: MailRepository,
        inbox: POP3Inbox | None = None,
    ) -> None:
        self.settings = settings
        self.attachments_dir = settings.attachments_path()
        self.extractor = MimeExtractor()
        storage = AttachmentStorage()
        self.uc = ProcessMailUseCase(
            repository=repository,
            extractor=self.extractor,
            storage=storage,
            tz_name=settings.TZ,
        )
        self.quarantine = QuarantineHandler(
            failed_dir=settings.failed_messages_path(),
            extractor=self.extractor,
            storage=storage,
        )
        self.inbox = inbox or POP3Inbox(
            settings.MAIL_HOST,
            settings.MAIL_PORT,
            settings.MAIL_USERNAME,
            settings.MAIL_PASSWORD,
            starttls=settings.use_starttls(),
            delete_messages=settings.DELETE_INBOX_MESSAGES,
            timeout=settings.MAIL_TIMEOUT,
        )

    # ───────────────────────── ejecución ─────────────────────────
    def run_once(self) -> list[ProcessingOutcome]:
        """
        Lanza MailConnectionError si el buzón no está disponible (el ciclo se aborta
        y se reintenta en el siguiente tick). Los errores de un correo no abortan el resto.
        """
        st = self.settings
        outcomes: list[ProcessingOutcome] = []
        logger.info("Buscando correos nuevos…")
        with self.inbox as inbox:
            messages = list(reversed(inbox.list_messages()))
            if not messages:
                logger.info("Sin correos en el buzón.")
                return outcomes
            if st.MAX_MAILS_PER_LOOP > 0:
                messages = messages[:st.MAX_MAILS_PER_LOOP]
            logger.info("Procesando %d correos…", len(messages))

            for item in messages:
                outcome = self._process_message(inbox, item)
                outcomes.append(outcome)
                if outcome.status == "failed":
                    continue
                if inbox.mark_for_deletion(item, st.DELETE_INBOX_MESSAGES):
                    logger.info("Correo %s marcado para borrar del buzón", short_id(outcome.message_id))
                if outcome.status == "duplicate" and st.STOP_AT_FIRST_DUPLICATE:
                    logger.info("Correo ya procesado: se asume que los anteriores también lo están.")
                    break
        return outcomes

    def _process_message(self, inbox: POP3Inbox, item: MailboxMessage) -> ProcessingOutcome:
        # un fallo de red al descargar es de conexión: se propaga y aborta el ciclo
        raw = inbox.fetch(item)
        with MailRunLogCapture() as cap:
            try:
                message = self.extractor.parse(raw)
                outcome = self.uc.process_mail(message, self.attachments_dir)
            except MailIngestError as exc:
                logger.error("Error procesando correo #%s: %s", item.number, exc)
                outcome = ProcessingOutcome.failed("", str(exc))
            except Exception as exc:
                logger.exception("Error inesperado procesando correo #%s", item.number)
                outcome = ProcessingOutcome.failed("", f"{type(exc).__name__}: {exc}")

        if outcome.status == "failed":
            self.quarantine.quarantine(
                raw,
                message_id=outcome.message_id,
                reason=outcome.reason,
                log_text=cap.text(),
            )
        return outcome

    def shutdown(self) -> None:
        """Cierre best-effort de la conexión (aplicando borrados si están activos)."""
        self.inbox.close(expunge_deleted=self.settings.DELETE_INBOX_MESSAGES)
