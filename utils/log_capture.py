# utils/log_capture.py

from __future__ import annotations
import io
import logging
import threading


class _SameThreadFilter(logging.Filter):
    def __init__(self, thread_id: int) -> None:
        super().__init__()
        self.thread_id = thread_id

    def filter(self, record: logging.LogRecord) -> bool:
        return record.thread == self.thread_id


class MailRunLogCapture:
    """
    Captura temporal del log (root) del hilo actual mientras se procesa un correo.
    Si el correo acaba en cuarentena, el texto se guarda junto a él.
    Uso:
        with MailRunLogCapture() as cap:
            ... # procesar correo
            text = cap.text()
    """
    def __init__(self, level=logging.INFO) -> None:
        self.level = level
        self.buffer = io.StringIO()
        self.handler = logging.StreamHandler(self.buffer)
        self.handler.setLevel(level)
        self.handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    def __enter__(self):
        self.handler.addFilter(_SameThreadFilter(threading.get_ident()))
        root = logging.getLogger()
        self._prev_level = root.level
        if root.level == logging.NOTSET or root.level > self.level:
            root.setLevel(self.level)
        root.addHandler(self.handler)
        return self

    def __exit__(self, exc_type, exc, tb):
        root = logging.getLogger()
        try:
            root.removeHandler(self.handler)
            root.setLevel(self._prev_level)
        finally:
            self.handler.close()

    def text(self) -> str:
        return self.buffer.getvalue()
