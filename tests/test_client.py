from __future__ import annotations

import base64

import pytest
import requests

from carevision.errors import ConfigurationError, InferenceError
from carevision.models import AlertStatus, Emotion, Motion
from carevision.vlm import client as client_module
from carevision.vlm.client import REQUIRED_FIELDS, CareVisionClient

from conftest import FakeHttpSession, FakeResponse, completion

VALID = {
    "summary": "Patient is sitting up and smiling.",
    "emotion": "Happy",
    "motion": "Normal Activity",
    "alertStatus": "No Alert",
    "recommendation": "Patient appears calm.",
}


def _client(session: FakeHttpSession) -> CareVisionClient:
    return CareVisionClient(model="test-model", api_key="sk-testkey1234567890", base_url="https://vlm.test/v1/", session=session)


def test_generate_report_returns_typed_report() -> None:
    http = FakeHttpSession(FakeResponse(200, completion(VALID)))
    report = _client(http).generate_report(b"\xff\xd8frame", "image/jpeg")

    assert report.emotion == Emotion.HAPPY
    assert report.motion == Motion.NORMAL_ACTIVITY
    assert report.alert_status == AlertStatus.NO_ALERT
    assert report.summary == VALID["summary"]

    assert len(http.posts) == 1
    sent = http.posts[0]
    assert sent["url"] == "https://vlm.test/v1/chat/completions"
    assert sent["headers"]["Authorization"] == "Bearer sk-testkey1234567890"
    schema = sent["json"]["response_format"]["json_schema"]["schema"]
    assert schema["required"] == list(REQUIRED_FIELDS)
    assert schema["properties"]["motion"]["enum"] == [m.value for m in Motion]
    image_url = sent["json"]["messages"][1]["content"][1]["image_url"]["url"]
    assert image_url == "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8frame").decode("ascii")


def test_base64_frame_is_passed_through() -> None:
    http = FakeHttpSession(FakeResponse(200, completion(VALID)))
    _client(http).generate_report("QUJD", "image/png")
    image_url = http.posts[0]["json"]["messages"][1]["content"][1]["image_url"]["url"]
    assert image_url == "data:image/png;base64,QUJD"


def test_missing_summary_is_rejected() -> None:
    payload = {key: value for key, value in VALID.items() if key != "summary"}
    http = FakeHttpSession(FakeResponse(200, completion(payload)))
    with pytest.raises(InferenceError, match="summary"):
        _client(http).generate_report(b"frame", "image/jpeg")


def test_blank_recommendation_is_rejected() -> None:
    http = FakeHttpSession(FakeResponse(200, completion({**VALID, "recommendation": "   "})))
    with pytest.raises(InferenceError, match="recommendation"):
        _client(http).generate_report(b"frame", "image/jpeg")


def test_unknown_enum_value_is_rejected() -> None:
    http = FakeHttpSession(FakeResponse(200, completion({**VALID, "emotion": "Bored"})))
    with pytest.raises(InferenceError, match="emotion"):
        _client(http).generate_report(b"frame", "image/jpeg")


def test_non_json_text_is_rejected() -> None:
    http = FakeHttpSession(FakeResponse(200, completion("I cannot see anyone in this image.")))
    with pytest.raises(InferenceError):
        _client(http).generate_report(b"frame", "image/jpeg")


def test_http_error_fails_after_single_attempt() -> None:
    http = FakeHttpSession(FakeResponse(500, {"error": {"message": "upstream exploded"}}))
    with pytest.raises(InferenceError, match="HTTP 500"):
        _client(http).generate_report(b"frame", "image/jpeg")
    assert len(http.posts) == 1


def test_transport_error_is_wrapped() -> None:
    http = FakeHttpSession(error=requests.ConnectionError("connection refused"))
    with pytest.raises(InferenceError, match="connection refused"):
        _client(http).generate_report(b"frame", "image/jpeg")


def test_error_message_redacts_api_key() -> None:
    http = FakeHttpSession(FakeResponse(401, {"error": "Incorrect API key provided: sk-abcdefghijklmnop"}))
    with pytest.raises(InferenceError) as excinfo:
        _client(http).generate_report(b"frame", "image/jpeg")
    assert "sk-abcdefghijklmnop" not in str(excinfo.value)
    assert "sk-REDACTED" in str(excinfo.value)


def test_fenced_json_and_loose_enum_spelling_are_normalised() -> None:
    text = (
        "```json\n"
        '{"summary": "Patient lying in bed.", "emotion": "calm", "motion": "lying still resting", '
        '"alertStatus": "no alert", "recommendation": "No action needed."}\n'
        "```"
    )
    http = FakeHttpSession(FakeResponse(200, completion(text)))
    report = _client(http).generate_report(b"frame", "image/jpeg")
    assert report.emotion == Emotion.CALM
    assert report.motion == Motion.LYING_STILL_RESTING
    assert report.alert_status == AlertStatus.NO_ALERT


@pytest.mark.parametrize(
    ("emotion", "motion", "claimed", "expected"),
    [
        ("Pain", "Normal Activity", "No Alert", "Alert Triggered"),
        ("Calm", "Normal Activity", "Alert Triggered", "No Alert"),
        ("Neutral", "Sudden Movement (Potential Fall)", "No Alert", "Alert Triggered"),
        ("Distress", "Lying Still (Resting)", "Alert Triggered", "Alert Triggered"),
    ],
)
def test_alert_status_follows_escalation_rule(emotion, motion, claimed, expected) -> None:
    payload = {**VALID, "emotion": emotion, "motion": motion, "alertStatus": claimed}
    http = FakeHttpSession(FakeResponse(200, completion(payload)))
    report = _client(http).generate_report(b"frame", "image/jpeg")
    assert report.alert_status.value == expected


def test_missing_api_key_is_a_configuration_error(monkeypatch) -> None:
    monkeypatch.setattr(client_module, "get_vlm_api_key", lambda: None)
    with pytest.raises(ConfigurationError):
        CareVisionClient(model="test-model", base_url="https://vlm.test/v1", session=FakeHttpSession())


@pytest.mark.parametrize(
    "payload",
    [
        {"choices": [{"message": None}]},
        {"choices": ["not a choice"]},
        {"choices": [{"message": {"content": [{"text": 42}]}}]},
        {"choices": None, "output_text": {"summary": "x"}},
        ["unexpected", "list"],
    ],
)
def test_malformed_completion_shapes_raise_inference_error(payload) -> None:
    http = FakeHttpSession(FakeResponse(200, payload))
    with pytest.raises(InferenceError, match="No response text"):
        _client(http).generate_report(b"frame", "image/jpeg")
