# domain/errors.py
from __future__ import annotations


class MailIngestError(Exception):
    """Base de los errores propios del ingestor."""


class MailConnectionError(MailIngestError, ConnectionError):
    """Fallo de red, TLS o autenticación contra el buzón. Aborta el ciclo."""


class ParseError(MailIngestError):
    """Estructura MIME inesperada o ilegible. El correo va a cuarentena."""


class PersistenceError(MailIngestError):
    """Fallo al consultar o guardar registros. El correo va a cuarentena."""


class FilesystemConfigError(MailIngestError):
    """Directorio requerido ausente. Fatal al arrancar."""
