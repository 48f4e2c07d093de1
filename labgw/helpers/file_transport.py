import asyncio
import threading
import time
from pathlib import Path
from typing import Awaitable, Callable, Dict

from watchdog.events import PatternMatchingEventHandler
from watchdog.observers import Observer

from labgw.commons.logger import logger

OnCapture = Callable[[bytes, str], Awaitable[None]]


def read_capture(path: Path, attempts: int = 10, delay: float = 0.05) -> bytes:
    """Lee una captura cruda; reintenta si el archivo sigue bloqueado."""
    for _ in range(attempts):
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise
        except OSError:
            time.sleep(delay)
    # Último intento; si vuelve a fallar, que se vea en logs
    return path.read_bytes()


class FileWatcher:
    """
    Vigila una carpeta de capturas crudas (bytes tal cual salieron del equipo).

    Cada evento (created/modified/closed/moved) reinicia una espera de `settle`
    segundos por archivo; la captura se lee solo cuando el archivo lleva ese
    tiempo sin cambios, así un archivo a medio escribir no se procesa partido.
    """

    def __init__(
        self,
        inbox: str,
        glob: str,
        on_capture_async: OnCapture,
        loop: asyncio.AbstractEventLoop,
        settle: float = 1.0,
    ):
        self.inbox = Path(inbox)
        self.inbox.mkdir(parents=True, exist_ok=True)
        self.loop = loop
        self.on_capture_async = on_capture_async
        self.settle = settle
        self._timers: Dict[Path, threading.Timer] = {}
        self._lock = threading.Lock()
        self.handler = PatternMatchingEventHandler(patterns=[glob], ignore_directories=True)

        self.handler.on_created = lambda e: self._touch(Path(e.src_path))
        self.handler.on_modified = lambda e: self._touch(Path(e.src_path))
        self.handler.on_closed = lambda e: self._touch(Path(e.src_path))
        self.handler.on_moved = lambda e: self._touch(Path(e.dest_path))

        self.observer = Observer()

    def _touch(self, path: Path):
        # Solo la carpeta vigilada; processed/ queda fuera
        if path.parent.resolve() != self.inbox.resolve():
            return
        timer = threading.Timer(self.settle, self._submit, args=(path,))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(path, None)
            if previous is not None:
                previous.cancel()
            self._timers[path] = timer
        timer.start()

    def _submit(self, path: Path):
        with self._lock:
            # Un evento posterior ya re-armó otra espera para este archivo
            if self._timers.get(path) is not threading.current_thread():
                return
            del self._timers[path]
        # Si el archivo ya no existe, no hay nada que leer (pudo haberse movido)
        if not path.exists():
            return
        try:
            data = read_capture(path)
        except FileNotFoundError:
            return
        logger.debug(f"captura estable: {path.name} ({len(data)} bytes)")
        # Ejecutar la corrutina en el loop principal (thread-safe)
        asyncio.run_coroutine_threadsafe(self.on_capture_async(data, str(path)), self.loop)

    def start(self):
        self.observer.schedule(self.handler, str(self.inbox), recursive=False)
        self.observer.start()

    def stop(self):
        self.observer.stop()
        self.observer.join()
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
