# infrastructure/email/pop3_client.py
from __future__ import annotations
from dataclasses import dataclass, field
import logging
import poplib
import ssl

from domain.errors import MailConnectionError
from domain.models import MailboxMessage

logger = logging.getLogger(__name__)


@dataclass
class MailboxHandle:
    server: poplib.POP3
    read_only: bool
    flagged: set[int] = field(default_factory=set)


class POP3Inbox:
    """
    Ciclo de vida de la conexión POP3S: conectar → listar/descargar/marcar → cerrar.
    Solo existe un MailboxHandle vivo; reconectar cierra el anterior antes de abrir otro.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        *,
        starttls: bool = False,
        delete_messages: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.starttls = starttls
        self.delete_messages = delete_messages
        self.timeout = timeout
        self._handle: MailboxHandle | None = None

    def __enter__(self) -> "POP3Inbox":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close(expunge_deleted=self.delete_messages)

    @property
    def is_connected(self) -> bool:
        return self._handle is not None

    # ───────── conexión ─────────
    def connect(self) -> None:
        if self._handle is not None:
            self.close(expunge_deleted=False)

        server: poplib.POP3 | None = None
        try:
            context = ssl.create_default_context()
            if self.starttls:
                server = poplib.POP3(self.host, self.port, timeout=self.timeout)
                server.stls(context=context)
            else:
                server = poplib.POP3_SSL(self.host, self.port, timeout=self.timeout, context=context)
            server.user(self.user)
            server.pass_(self.password)
        except (poplib.error_proto, OSError) as exc:
            if server is not None:
                self._drop(server)
            raise MailConnectionError(f"No se pudo conectar a {self.host}:{self.port}: {exc}") from exc

        self._handle = MailboxHandle(server=server, read_only=not self.delete_messages)
        logger.info(
            "Conectado a %s:%s (%s)",
            self.host, self.port, "solo lectura" if self._handle.read_only else "lectura/escritura",
        )

    def close(self, expunge_deleted: bool = False) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            if handle.flagged and not expunge_deleted:
                handle.server.rset()
            # POP3 aplica los DELE pendientes al hacer QUIT
            handle.server.quit()
            if handle.flagged and expunge_deleted:
                logger.info("Eliminados %d correos marcados del buzón", len(handle.flagged))
        except (poplib.error_proto, OSError):
            logger.exception("Error cerrando la sesión POP3")
            self._drop(handle.server)

    # ───────── mensajes ─────────
    def list_messages(self) -> list[MailboxMessage]:
        server = self._require().server
        try:
            _resp, listings, _octets = server.list()
        except (poplib.error_proto, OSError) as exc:
            raise MailConnectionError(f"Fallo en LIST: {exc}") from exc

        messages: list[MailboxMessage] = []
        for line in listings:
            parts = line.decode("ascii", errors="ignore").split()
            if len(parts) >= 2:
                messages.append(MailboxMessage(number=int(parts[0]), size=int(parts[1])))
        return messages

    def fetch(self, message: MailboxMessage) -> bytes:
        server = self._require().server
        try:
            _resp, lines, _octets = server.retr(message.number)
        except (poplib.error_proto, OSError) as exc:
            raise MailConnectionError(f"Fallo en RETR {message.number}: {exc}") from exc
        return b"\r\n".join(lines) + b"\r\n"

    def mark_for_deletion(self, message: MailboxMessage, should_delete: bool = True) -> bool:
        handle = self._require()
        if handle.read_only or not should_delete:
            return False
        try:
            handle.server.dele(message.number)
        except (poplib.error_proto, OSError) as exc:
            raise MailConnectionError(f"Fallo en DELE {message.number}: {exc}") from exc
        handle.flagged.add(message.number)
        return True

    # ───────── helpers ─────────
    def _require(self) -> MailboxHandle:
        if self._handle is None:
            raise MailConnectionError("Buzón no conectado")
        return self._handle

    @staticmethod
    def _drop(server: poplib.POP3) -> None:
        try:
            server.close()
        except OSError:
            logger.debug("Socket POP3 ya cerrado")
