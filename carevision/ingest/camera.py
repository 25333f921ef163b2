import logging
import time

import cv2

from carevision.errors import CameraAccessDenied, FrameCaptureError
from carevision.settings import CAMERA_DENIED_MESSAGE

logger = logging.getLogger(__name__)


class WebcamSource:
    """A single camera device opened with OpenCV; owned by one monitoring session at a time."""

    def __init__(self, device=0, warmup_seconds=3.0, capture_factory=cv2.VideoCapture):
        self.device = device
        self.warmup_seconds = warmup_seconds
        self._capture_factory = capture_factory
        self.capture = None

    @property
    def is_open(self):
        return self.capture is not None

    def open(self):
        if self.capture is not None:
            return
        try:
            capture = self._capture_factory(self.device)
        except cv2.error as exc:
            raise CameraAccessDenied(CAMERA_DENIED_MESSAGE) from exc
        if not capture.isOpened():
            capture.release()
            logger.error("Camera %r could not be opened", self.device)
            raise CameraAccessDenied(CAMERA_DENIED_MESSAGE)
        self.capture = capture
        logger.info("Camera %r opened", self.device)

    def wait_until_ready(self, timeout=None):
        """Block until the device delivers its first frame and return it."""
        if self.capture is None:
            raise CameraAccessDenied(CAMERA_DENIED_MESSAGE)
        deadline = time.monotonic() + (self.warmup_seconds if timeout is None else timeout)
        while True:
            ok, frame = self.capture.read()
            if ok and frame is not None:
                return frame
            if time.monotonic() >= deadline:
                logger.error("Camera %r produced no frame during warmup", self.device)
                raise CameraAccessDenied(CAMERA_DENIED_MESSAGE)
            time.sleep(0.05)

    def read_frame(self):
        if self.capture is None:
            raise FrameCaptureError("Camera is not open.")
        ok, frame = self.capture.read()
        if not ok or frame is None:
            raise FrameCaptureError("Could not capture a frame from the camera.")
        return frame

    def release(self):
        if self.capture is not None:
            self.capture.release()
            self.capture = None
            logger.info("Camera %r released", self.device)


def encode_jpeg(frame, quality=80):
    ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise FrameCaptureError("Could not encode the captured frame.")
    return buffer.tobytes()
