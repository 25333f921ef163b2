"""Monitoring session: the capture loop and the state it owns.

A ``MonitoringSession`` moves through IDLE -> MONITORING -> (IDLE | ERROR).
While monitoring, a ``PeriodicTicker`` calls ``analyze_frame`` once right
away and then every ``interval_seconds``. At most one analysis is in flight
at any time; a failed analysis ends the session until it is started again.
"""

import logging
import threading

from carevision.errors import CameraAccessDenied, SessionStateError
from carevision.ingest.camera import WebcamSource, encode_jpeg
from carevision.models import AppStatus, Event, SessionState
from carevision.settings import (
    CAMERA_DENIED_MESSAGE,
    get_camera_device,
    get_camera_warmup_seconds,
    get_capture_interval_seconds,
    get_history_limit,
    get_jpeg_quality,
)

logger = logging.getLogger(__name__)

FRAME_MIME_TYPE = "image/jpeg"


def default_camera_factory():
    return WebcamSource(device=get_camera_device(), warmup_seconds=get_camera_warmup_seconds())


class PeriodicTicker:
    """Calls ``callback`` immediately, then every ``interval_seconds`` on a daemon thread."""

    def __init__(self, interval_seconds, callback, name="carevision-ticker"):
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._name = name
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Ticker %s is already running.", self._name)
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def _run(self):
        logger.debug("Ticker %s started (interval=%.2fs)", self._name, self.interval_seconds)
        while not self._stop_event.is_set():
            try:
                self._callback()
            except Exception:
                logger.exception("Tick failed")
            if self._stop_event.wait(timeout=self.interval_seconds):
                break
        logger.debug("Ticker %s stopped", self._name)

    def cancel(self, join_timeout=0.5):
        """Stop scheduling ticks. A tick already running is left to finish on its own."""
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=join_timeout)


class MonitoringSession:
    def __init__(self, client, camera_factory=None, interval_seconds=None, history_limit=None, jpeg_quality=None):
        self.client = client
        self.camera_factory = camera_factory or default_camera_factory
        self.interval_seconds = interval_seconds if interval_seconds is not None else get_capture_interval_seconds()
        self.history_limit = history_limit if history_limit is not None else get_history_limit()
        self.jpeg_quality = jpeg_quality if jpeg_quality is not None else get_jpeg_quality()
        self._state = SessionState()
        self._lock = threading.RLock()
        self._camera_lock = threading.Lock()
        self._camera = None
        self._ticker = None
        # Bumped on every start/stop/failure so late results from an older run are dropped.
        self._generation = 0
        self._observers = []

    @property
    def state(self):
        with self._lock:
            return self._state.snapshot()

    @property
    def status(self):
        with self._lock:
            return self._state.status

    def subscribe(self, callback):
        with self._lock:
            self._observers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _notify(self):
        with self._lock:
            snapshot = self._state.snapshot()
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Session observer %r failed", observer)

    def _release_camera(self, camera):
        if camera is None:
            return
        with self._camera_lock:
            camera.release()

    def start(self):
        with self._lock:
            if self._state.status == AppStatus.MONITORING:
                raise SessionStateError("Monitoring is already running.")
            self._generation += 1
            generation = self._generation
            self._state.reset()
            self._state.status = AppStatus.MONITORING
            self._state.is_processing = False
        self._notify()

        camera = None
        try:
            camera = self.camera_factory()
            camera.open()
            camera.wait_until_ready()
        except Exception as exc:
            self._release_camera(camera)
            if isinstance(exc, CameraAccessDenied):
                logger.error("Camera access denied: %s", exc)
                denied = exc
            else:
                logger.exception("Camera acquisition failed")
                denied = CameraAccessDenied(CAMERA_DENIED_MESSAGE)
            with self._lock:
                if generation == self._generation:
                    self._state.status = AppStatus.ERROR
                    self._state.error_message = str(denied)
            self._notify()
            if denied is exc:
                raise
            raise denied from exc

        with self._lock:
            if generation != self._generation:
                logger.info("Monitoring was stopped while the camera warmed up.")
                self._release_camera(camera)
                return
            self._camera = camera
            self._ticker = PeriodicTicker(self.interval_seconds, self.analyze_frame)
            self._ticker.start()
        logger.info("Monitoring started (interval=%.1fs, history_limit=%d)", self.interval_seconds, self.history_limit)

    def stop(self):
        with self._lock:
            if self._state.status == AppStatus.IDLE:
                raise SessionStateError("Monitoring is not running.")
            self._generation += 1
            ticker, self._ticker = self._ticker, None
            camera, self._camera = self._camera, None
            self._state.status = AppStatus.IDLE
            self._state.is_processing = False
        if ticker is not None:
            ticker.cancel()
        self._release_camera(camera)
        logger.info("Monitoring stopped.")
        self._notify()

    def close(self):
        if self.status != AppStatus.IDLE:
            self.stop()

    def _fail(self, generation, message):
        with self._lock:
            if generation != self._generation:
                return
            self._generation += 1
            ticker, self._ticker = self._ticker, None
            camera, self._camera = self._camera, None
            self._state.status = AppStatus.ERROR
            self._state.error_message = message
            self._state.is_processing = False
        if ticker is not None:
            ticker.cancel()
        self._release_camera(camera)
        logger.error("Monitoring halted: %s", message)
        self._notify()

    def analyze_frame(self):
        """Run one capture-and-report cycle. Returns True when a new report was stored."""
        with self._lock:
            if self._state.status != AppStatus.MONITORING or self._camera is None:
                return False
            if self._state.is_processing:
                logger.debug("Analysis already in flight; skipping tick.")
                return False
            self._state.is_processing = True
            generation = self._generation
            camera = self._camera
        self._notify()

        try:
            with self._camera_lock:
                frame = camera.read_frame()
            image = encode_jpeg(frame, self.jpeg_quality)
            report = self.client.generate_report(image, FRAME_MIME_TYPE)
        except Exception as exc:
            logger.exception("Frame analysis failed")
            self._fail(generation, str(exc) or "An unknown error occurred during analysis.")
            return False

        with self._lock:
            if generation != self._generation:
                logger.info("Discarding report from a session that has since ended.")
                return False
            self._state.current_report = report
            self._state.history = [Event.from_report(report)] + self._state.history
            del self._state.history[self.history_limit:]
            self._state.is_processing = False
        logger.info(
            "Report: emotion=%s motion=%s alert=%s",
            report.emotion.value,
            report.motion.value,
            report.alert_status.value,
        )
        self._notify()
        return True

    def latest_frame_jpeg(self):
        with self._lock:
            camera = self._camera
            if self._state.status != AppStatus.MONITORING or camera is None:
                return None
        with self._camera_lock:
            if not camera.is_open:
                return None
            frame = camera.read_frame()
        return encode_jpeg(frame, self.jpeg_quality)
