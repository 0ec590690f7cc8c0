# interface_adapters/controllers/poll_scheduler.py
from __future__ import annotations
import logging
import threading
import time
from typing import Callable

from domain.errors import MailConnectionError

logger = logging.getLogger(__name__)


class PollScheduler:
    """
    Ejecuta un ciclo a intervalo fijo en un hilo propio.
    Solo un ciclo en vuelo a la vez: un disparo concurrente se descarta (no se encola).
    """

    def __init__(self, cycle: Callable[[], object], *, name: str = "mail-poller") -> None:
        self._cycle = cycle
        self._name = name
        self._guard = threading.Lock()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._closed = False

    @property
    def is_running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    def start(self, interval_ms: int) -> None:
        # reprogramar cancela el timer anterior
        self.stop()
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._loop,
            args=(max(interval_ms, 1) / 1000.0, stop_event),
            name=self._name,
            daemon=True,
        )
        self._stop_event, self._thread = stop_event, thread
        thread.start()
        logger.info("Polling cada %d ms", interval_ms)

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        self._stop_event, self._thread = None, None

    def run_cycle(self) -> bool:
        if not self._guard.acquire(blocking=False):
            logger.info("Ciclo anterior aún en curso; se omite este disparo.")
            return False
        if self._closed:
            # tras shutdown no se abre ningún ciclo nuevo
            self._guard.release()
            return False
        try:
            self._cycle()
        except MailConnectionError as exc:
            logger.error("Buzón no disponible, se reintentará en el siguiente ciclo: %s", exc)
        except Exception:
            logger.exception("Error en ciclo de polling")
        finally:
            self._guard.release()
        return True

    def shutdown(self, on_idle: Callable[[], object] | None = None, timeout: float | None = None) -> bool:
        """
        Detiene el timer y espera a que termine el ciclo en curso antes de ejecutar
        on_idle (p. ej. cerrar la conexión). Devuelve False si venció el timeout.
        """
        self.stop()
        acquired = self._guard.acquire(timeout=-1 if timeout is None else timeout)
        self._closed = True
        if not acquired:
            logger.warning("El ciclo en curso no terminó en %s s; cierre sin esperar.", timeout)
        try:
            if on_idle is not None:
                on_idle()
        except Exception:
            logger.exception("Error durante el cierre")
        finally:
            if acquired:
                self._guard.release()
        return acquired

    def _loop(self, interval: float, stop_event: threading.Event) -> None:
        next_run = time.monotonic()
        while not stop_event.is_set():
            delay = next_run - time.monotonic()
            if delay > 0 and stop_event.wait(delay):
                break
            self.run_cycle()
            next_run += interval
            now = time.monotonic()
            if next_run < now:
                skipped = int((now - next_run) // interval) + 1
                next_run += skipped * interval
                logger.warning("El ciclo superó el intervalo; se omiten %d disparo(s).", skipped)
