# infrastructure/filesystem/storage.py
from __future__ import annotations
from pathlib import Path
import logging
import re
import uuid

logger = logging.getLogger(__name__)

FORBIDDEN_CHARS = re.compile(r'[<>:"/|?*]')
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_filename(name: str) -> str:
    """
    Devuelve un nombre seguro para el sistema de ficheros.
    Si contiene alguno de < > : " / | ? * se sustituye por un uuid,
    conservando la extensión solo si el texto tras el último '.' es limpio.
    Los caracteres de control (NUL incluido) se eliminan antes.
    """
    name = CONTROL_CHARS.sub("", name or "")
    if name and not FORBIDDEN_CHARS.search(name):
        return name
    ext = ""
    dot = (name or "").rfind(".")
    if dot != -1:
        candidate = name[dot:]
        if len(candidate) > 1 and not FORBIDDEN_CHARS.search(candidate):
            ext = candidate
    return f"{uuid.uuid4().hex}{ext}"


class AttachmentStorage:
    """Escribe adjuntos en subcarpetas por mensaje bajo un directorio raíz ya existente."""

    def message_directory(self, root: Path, message_id: str) -> Path:
        # parents=False: si falta la raíz es un error de configuración, no se crea aquí
        folder = root / sanitize_filename(message_id)
        folder.mkdir(exist_ok=True)
        return folder

    def save_bytes(self, directory: Path, name_hint: str, data: bytes) -> str:
        fp = self._free_path(directory / sanitize_filename(name_hint))
        fp.write_bytes(data)
        logger.debug("Guardado %s (%d bytes)", fp.name, len(data))
        return str(fp.resolve())

    @staticmethod
    def _free_path(fp: Path) -> Path:
        if not fp.exists():
            return fp
        stem, suffix = fp.stem, fp.suffix
        n = 1
        while True:
            candidate = fp.with_name(f"{stem}-{n}{suffix}")
            if not candidate.exists():
                return candidate
            n += 1
