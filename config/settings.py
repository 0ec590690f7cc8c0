# config/settings.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import os
from dotenv import load_dotenv

from domain.errors import FilesystemConfigError

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    # POP3 (TLS implícito en 995 o STARTTLS sobre 110)
    MAIL_HOST: str = os.getenv("MAIL_HOST", "")
    MAIL_PORT: int = int(os.getenv("MAIL_PORT", 995))
    MAIL_USERNAME: str = os.getenv("MAIL_USERNAME", "")
    MAIL_PASSWORD: str = os.getenv("MAIL_PASSWORD", "")
    MAIL_SECURITY: str = os.getenv("MAIL_SECURITY", "ssl").lower()  # ssl | starttls
    MAIL_TIMEOUT: float = float(os.getenv("MAIL_TIMEOUT", 30))

    # Directorios (deben existir antes de arrancar)
    ATTACHMENTS_DIRECTORY: str = os.getenv("ATTACHMENTS_DIRECTORY", "")
    FAILED_MESSAGES_DIRECTORY: str = os.getenv("FAILED_MESSAGES_DIRECTORY", "")

    # Polling
    POLL_INTERVAL_MS: int = int(os.getenv("POLL_INTERVAL_MS", 60000))
    MAX_MAILS_PER_LOOP: int = int(os.getenv("MAX_MAILS_PER_LOOP", 0))  # 0 = sin límite
    DELETE_INBOX_MESSAGES: bool = _env_bool("DELETE_INBOX_MESSAGES")
    # Solo válido si el buzón es append-only y ordenado; ver DESIGN.md
    STOP_AT_FIRST_DUPLICATE: bool = _env_bool("STOP_AT_FIRST_DUPLICATE")

    # Persistencia / varios
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///mail_records.db")
    TZ: str = os.getenv("TZ", "")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # ───────── helpers ─────────
    def use_starttls(self) -> bool:
        return self.MAIL_SECURITY == "starttls"

    def poll_interval_seconds(self) -> float:
        return max(self.POLL_INTERVAL_MS, 1) / 1000.0

    def attachments_path(self) -> Path:
        return Path(self.ATTACHMENTS_DIRECTORY).resolve()

    def failed_messages_path(self) -> Path:
        return Path(self.FAILED_MESSAGES_DIRECTORY).resolve()

    def validate_directories(self) -> None:
        """
        Comprueba que los directorios de adjuntos y de cuarentena existen.
        Lanza FilesystemConfigError: el proceso no debe arrancar sin ellos.
        """
        for label, raw in (
            ("ATTACHMENTS_DIRECTORY", self.ATTACHMENTS_DIRECTORY),
            ("FAILED_MESSAGES_DIRECTORY", self.FAILED_MESSAGES_DIRECTORY),
        ):
            if not raw.strip():
                raise FilesystemConfigError(f"{label} no está configurado")
            path = Path(raw)
            if not path.is_dir():
                raise FilesystemConfigError(f"{label} no existe o no es un directorio: {path}")
