# main.py
# Punto de entrada: polling POP3 -> extrae cuerpo/adjuntos -> guarda registros
from __future__ import annotations
import logging
import signal
import sys
import threading

from config.settings import Settings
from domain.errors import FilesystemConfigError
from infrastructure.persistence.mail_repository import SqlMailRepository, create_session_factory
from interface_adapters.controllers.poll_scheduler import PollScheduler
from interface_adapters.controllers.polling_controller import PollingController

logger = logging.getLogger(__name__)


def main() -> int:
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        settings.validate_directories()
    except FilesystemConfigError as exc:
        logger.critical("Configuración inválida: %s", exc)
        return 1

    repository = SqlMailRepository(create_session_factory(settings.DATABASE_URL))
    controller = PollingController(settings=settings, repository=repository)
    scheduler = PollScheduler(controller.run_once)

    logger.info("=== Mail Ingestor POP3 ===")
    logger.info("POP3 host=%s:%s adjuntos=%s", settings.MAIL_HOST, settings.MAIL_PORT, settings.attachments_path())

    stop = threading.Event()

    def _on_signal(signum, _frame) -> None:
        logger.info("Señal %s recibida, deteniendo…", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    scheduler.start(settings.POLL_INTERVAL_MS)
    try:
        while not stop.wait(1.0):
            pass
    finally:
        scheduler.shutdown(on_idle=controller.shutdown)
        logger.info("Detenido.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
