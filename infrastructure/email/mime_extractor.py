# infrastructure/email/mime_extractor.py
from __future__ import annotations
import email.message
import logging
import mimetypes
import re
import uuid

import pyzmail
from pyzmail.parse import decode_mail_header

from domain.errors import ParseError
from domain.models import Attachment, ExtractionResult
from infrastructure.filesystem.storage import sanitize_filename

logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r"<NUMERO_MESSAGE>(.*?)</NUMERO_MESSAGE>", re.DOTALL)
FALLBACK_PREFIX_PATTERN = re.compile(r"^untagged-[0-9a-f]{12}$")
MAX_NESTING_DEPTH = 8


def extract_tag(text: str) -> str:
    """Valor del primer <NUMERO_MESSAGE>…</NUMERO_MESSAGE> del texto, o ''."""
    m = TAG_PATTERN.search(text or "")
    return m.group(1).strip() if m else ""


def fallback_prefix() -> str:
    return f"untagged-{uuid.uuid4().hex[:12]}"


def _is_attachment(part: email.message.Message) -> bool:
    return (part.get_content_disposition() or "") == "attachment"


def _filename(part: email.message.Message) -> str | None:
    raw = part.get_filename()
    if raw is None:
        return None
    return decode_mail_header(raw).strip()


def _payload_bytes(part: email.message.Message) -> bytes:
    data = part.get_payload(decode=True)
    return data if isinstance(data, bytes) else b""


def _part_text(part: email.message.Message) -> str:
    data = _payload_bytes(part)
    charset = part.get_content_charset() or "utf-8"
    try:
        return data.decode(charset, errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")


class MimeExtractor:
    """
    Descompone un correo en (cuerpo, adjuntos).

    - El primer text/plain encontrado es el cuerpo; los siguientes se ignoran.
    - text/html se guarda como fichero, nunca se mezcla con el cuerpo.
    - Partes con disposición 'attachment' o con nombre de fichero → adjunto.
    - El resto (p. ej. imágenes inline sin nombre) se descarta.
    """

    def parse(self, raw: bytes) -> pyzmail.PyzMessage:
        try:
            return pyzmail.PyzMessage.factory(raw)
        except Exception as exc:
            raise ParseError(f"Mensaje ilegible: {exc}") from exc

    def extract(self, message: email.message.Message) -> ExtractionResult:
        body = self._envelope_body(message, depth=0)
        found: list[tuple[str | None, bytes, str, str]] = []
        if message.is_multipart():
            body = self._walk(message, body, found, depth=0)

        prefix = extract_tag(body) or fallback_prefix()
        attachments = [self._named(prefix, *item) for item in found]
        return ExtractionResult(body=body, prefix=prefix, attachments=attachments)

    # ───────── cuerpo ─────────
    def _envelope_body(self, part: email.message.Message, depth: int) -> str:
        """
        Baja por la primera subparte de cada multipart anidado (sobre dentro de sobre)
        hasta una hoja; si es text/plain, ese es el cuerpo.
        """
        if part.get_content_maintype() == "multipart" and not part.is_multipart():
            raise ParseError(f"Contenedor {part.get_content_type()} sin subpartes")
        if part.get_content_maintype() != "multipart":
            # message/rfc822 es una hoja: no se baja al correo reenviado
            if depth == 0 and part.get_content_maintype() == "text" and not _is_attachment(part):
                return _part_text(part)
            if part.get_content_type() == "text/plain" and not _is_attachment(part) and _filename(part) is None:
                return _part_text(part)
            return ""
        if depth >= MAX_NESTING_DEPTH:
            raise ParseError(f"Anidamiento MIME superior a {MAX_NESTING_DEPTH} niveles")
        subparts = part.get_payload()
        if not subparts:
            raise ParseError(f"Contenedor {part.get_content_type()} sin subpartes")
        return self._envelope_body(subparts[0], depth + 1)

    # ───────── recorrido ─────────
    def _walk(self, container: email.message.Message, body: str, found: list, depth: int) -> str:
        for part in container.get_payload():
            ctype = part.get_content_type()
            filename = _filename(part)
            attachment = _is_attachment(part)

            if ctype == "message/rfc822":
                if attachment or filename is not None:
                    inner = part.get_payload(0)
                    found.append((filename or "forwarded.eml", inner.as_bytes(), ctype, "file"))
                continue
            if part.is_multipart():
                if depth + 1 >= MAX_NESTING_DEPTH:
                    raise ParseError(f"Anidamiento MIME superior a {MAX_NESTING_DEPTH} niveles")
                body = self._walk(part, body, found, depth + 1)
                continue

            if ctype == "text/plain" and not attachment and filename is None:
                if not body:
                    body = _part_text(part)
            elif ctype == "text/html" and not attachment and filename is None:
                found.append((None, _payload_bytes(part), ctype, "html"))
            elif attachment or filename is not None:
                found.append((filename, _payload_bytes(part), ctype, "file"))
            else:
                # Limitación conocida: partes inline sin nombre no se conservan
                logger.debug("Parte %s descartada (inline sin nombre)", ctype)
        return body

    @staticmethod
    def _named(prefix: str, filename: str | None, content: bytes, ctype: str, kind: str) -> Attachment:
        if kind == "html":
            name = f"{prefix}_{uuid.uuid4()}.html"
        elif filename:
            name = f"{prefix}_{sanitize_filename(filename)}"
        else:
            name = f"{prefix}_{uuid.uuid4().hex}{mimetypes.guess_extension(ctype) or ''}"
        return Attachment(filename=name, content=content, content_type=ctype, kind=kind)
