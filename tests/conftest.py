from __future__ import annotations

import json
import threading
import time

import numpy as np
import pytest

from carevision.errors import CameraAccessDenied, FrameCaptureError
from carevision.models import Report
from carevision.settings import CAMERA_DENIED_MESSAGE


def make_report(**overrides) -> Report:
    fields = {
        "summary": "Patient is resting comfortably.",
        "emotion": "Calm",
        "motion": "Lying Still (Resting)",
        "alertStatus": "No Alert",
        "recommendation": "Patient appears calm.",
    }
    fields.update(overrides)
    return Report.model_validate(fields)


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeCamera:
    def __init__(self, denied: bool = False, fail_reads: bool = False) -> None:
        self.denied = denied
        self.fail_reads = fail_reads
        self.opened = False
        self.released = False
        self.reads = 0

    @property
    def is_open(self) -> bool:
        return self.opened and not self.released

    def open(self) -> None:
        if self.denied:
            raise CameraAccessDenied(CAMERA_DENIED_MESSAGE)
        self.opened = True

    def wait_until_ready(self, timeout=None):
        return self.read_frame()

    def read_frame(self):
        if not self.is_open or self.fail_reads:
            raise FrameCaptureError("Could not capture a frame from the camera.")
        self.reads += 1
        return np.zeros((8, 8, 3), dtype=np.uint8)

    def release(self) -> None:
        self.released = True


class FakeClient:
    model = "fake-model"

    def __init__(self, outcomes=None, gate: threading.Event | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.gate = gate
        self.calls = []
        self._lock = threading.Lock()

    def generate_report(self, frame, mime_type):
        with self._lock:
            self.calls.append((frame, mime_type))
            index = len(self.calls)
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        outcome = self.outcomes.pop(0) if self.outcomes else make_report(summary=f"Report {index}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text or json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeHttpSession:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.posts.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def completion(content) -> dict:
    if not isinstance(content, str):
        content = json.dumps(content)
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def camera() -> FakeCamera:
    return FakeCamera()
