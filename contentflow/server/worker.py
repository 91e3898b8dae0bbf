# contentflow/server/worker.py
import logging
import threading
import uuid
from typing import Callable, Optional

DEFAULT_POLL_INTERVAL = 60.0
DEFAULT_COOLDOWN = 5.0


class Worker:
    """
    Periodic driver. Calls ``tick`` every ``poll_interval`` seconds until
    ``stop`` is called; a failing tick is logged and followed by a cooldown.
    """

    def __init__(
        self,
        tick: Callable[[], object],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        cooldown: float = DEFAULT_COOLDOWN,
        logger: Optional[logging.Logger] = None,
    ):
        self.tick = tick
        self.poll_interval = poll_interval
        self.cooldown = cooldown
        self.worker_id = f"worker:{uuid.uuid4()}"
        self.logger = logger or logging.getLogger(__name__)
        self._shutdown_requested = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self):
        """Starts the worker's ticking loop in the current thread."""
        self.logger.info(f"[{self.worker_id}] Starting worker, interval {self.poll_interval}s")
        while not self._shutdown_requested.is_set():
            try:
                self.tick()
                delay = self.poll_interval
            except KeyboardInterrupt:
                self.logger.info(f"[{self.worker_id}] Shutdown requested...")
                self._shutdown_requested.set()
                break
            except Exception:
                self.logger.error(
                    f"[{self.worker_id}] Unhandled exception in worker loop", exc_info=True
                )
                delay = self.cooldown  # Cooldown period after a major failure
            self._shutdown_requested.wait(delay)

        self.logger.info(f"[{self.worker_id}] Worker has stopped.")

    def start(self) -> threading.Thread:
        """Runs the loop on a daemon thread, for embedding in a web host."""
        if self.running:
            return self._thread
        self._shutdown_requested.clear()
        self._thread = threading.Thread(
            target=self.run, name="contentflow-worker", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._shutdown_requested.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
