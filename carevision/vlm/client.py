import base64
import json
import logging
import re

import requests
from pydantic import ValidationError

from carevision.errors import ConfigurationError, InferenceError, sanitize_error_message
from carevision.models import AlertStatus, Emotion, Motion, Report, alert_required
from carevision.settings import (
    get_vlm_api_key,
    get_vlm_base_url,
    get_vlm_max_tokens,
    get_vlm_model,
    get_vlm_timeout_seconds,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("summary", "emotion", "motion", "alertStatus", "recommendation")

SYSTEM_PROMPT = (
    "You are CareVision, an AI health monitoring assistant for the elderly and hospital patients. "
    "Your primary goal is patient safety and well-being.\n"
    "Analyze the following image from a patient's room.\n"
    "1. Assess Emotion: Identify facial expressions for signs of distress, pain, fear, or sadness.\n"
    "2. Analyze Motion: Observe body posture for sudden movements (indicating a fall) or prolonged stillness.\n"
    "3. Determine Alert Status: If any sign of significant distress (Pain, Fear, Distress, Potential Fall) "
    "is detected, set 'alertStatus' to 'Alert Triggered'. Otherwise, it must be 'No Alert'.\n"
    "4. Provide a Recommendation: Give a concise, actionable recommendation for a caretaker.\n"
    "Your response must be factual, concise, and strictly follow the provided JSON schema."
)

USER_PROMPT = "Analyze this frame from the patient's room. Provide your assessment as JSON only."


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


REPORT_SCHEMA = {
    "type": "object",
    "properties": {
        "summary": {
            "type": "string",
            "description": "A brief, one-sentence summary of the patient's current state.",
        },
        "emotion": {
            "type": "string",
            "enum": _enum_values(Emotion),
            "description": "Detected emotion.",
        },
        "motion": {
            "type": "string",
            "enum": _enum_values(Motion),
            "description": "Detected motion or state.",
        },
        "alertStatus": {
            "type": "string",
            "enum": _enum_values(AlertStatus),
            "description": (
                "Set to 'Alert Triggered' if distress, pain, fear, or a potential fall is detected. "
                "Otherwise, 'No Alert'."
            ),
        },
        "recommendation": {
            "type": "string",
            "description": (
                "A clear, actionable recommendation for the caretaker. E.g., 'Patient appears calm.' "
                "or 'Check on the patient immediately.'"
            ),
        },
    },
    "required": list(REQUIRED_FIELDS),
    "additionalProperties": False,
}


def _enum_key(value):
    return re.sub(r"[^a-z0-9]", "", str(value).lower())


_ENUM_LOOKUP = {
    "emotion": {_enum_key(member.value): member.value for member in Emotion},
    "motion": {_enum_key(member.value): member.value for member in Motion},
    "alertStatus": {_enum_key(member.value): member.value for member in AlertStatus},
}


class CareVisionClient:
    def __init__(self, model=None, timeout_seconds=None, max_tokens=None, base_url=None, api_key=None, session=None):
        self.model = model or get_vlm_model()
        self.timeout_seconds = timeout_seconds or get_vlm_timeout_seconds()
        self.max_tokens = max_tokens or get_vlm_max_tokens()
        self.base_url = (base_url or get_vlm_base_url()).rstrip("/")
        self.api_key = api_key or get_vlm_api_key()
        if not self.api_key:
            raise ConfigurationError("Missing VLM API key. Set OPENAI_API_KEY or VLM_API_KEY.")
        self.session = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        self.last_raw_text = None

    def _image_to_data_url(self, frame, mime_type):
        mime_type = (mime_type or "image/jpeg").split(";")[0]
        if isinstance(frame, (bytes, bytearray)):
            encoded = base64.b64encode(frame).decode("ascii")
        else:
            encoded = str(frame)
        return f"data:{mime_type};base64,{encoded}"

    def _build_payload(self, frame, mime_type):
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": self._image_to_data_url(frame, mime_type)},
                        },
                    ],
                },
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "care_vision_report", "strict": True, "schema": REPORT_SCHEMA},
            },
            "temperature": 0.0,
            "max_tokens": self.max_tokens,
        }

    def _extract_output_text(self, payload):
        choices = payload.get("choices") if isinstance(payload, dict) else None
        if isinstance(choices, list) and choices:
            choice = choices[0] if isinstance(choices[0], dict) else {}
            message = choice.get("message")
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, list):
                parts = []
                for item in content:
                    if isinstance(item, dict) and isinstance(item.get("text"), str):
                        parts.append(item["text"])
                    elif isinstance(item, str):
                        parts.append(item)
                if parts:
                    return "".join(parts).strip()
            if isinstance(content, str) and content.strip():
                return content.strip()
        output_text = payload.get("output_text") if isinstance(payload, dict) else None
        if isinstance(output_text, str) and output_text.strip():
            return output_text.strip()
        raise ValueError("No response text found in VLM response")

    def _parse_json(self, text):
        cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", text.strip())
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            parsed = None
            for match in re.finditer(r"\{.*?\}", text, re.DOTALL):
                try:
                    parsed = json.loads(match.group(0))
                    break
                except json.JSONDecodeError:
                    continue
        if not isinstance(parsed, dict):
            raise ValueError("No valid JSON object found in VLM response")
        return parsed

    def _normalize_parsed(self, parsed):
        missing = [name for name in REQUIRED_FIELDS if not str(parsed.get(name) or "").strip()]
        if missing:
            raise ValueError(f"Invalid report structure received from API: missing {', '.join(missing)}")
        normalized = {name: parsed[name] for name in REQUIRED_FIELDS}
        for name, lookup in _ENUM_LOOKUP.items():
            value = lookup.get(_enum_key(normalized[name]))
            if value is None:
                raise ValueError(f"Invalid {name} value received from API: {normalized[name]!r}")
            normalized[name] = value
        return normalized

    def _reconcile_alert(self, report):
        expected = AlertStatus.ALERT_TRIGGERED if alert_required(report.emotion, report.motion) else AlertStatus.NO_ALERT
        if report.alert_status == expected:
            return report
        logger.warning(
            "Model alertStatus %r disagrees with escalation rule for emotion=%s motion=%s; using %r",
            report.alert_status.value,
            report.emotion.value,
            report.motion.value,
            expected.value,
        )
        return report.model_copy(update={"alert_status": expected})

    def generate_report(self, frame, mime_type):
        url = f"{self.base_url}/chat/completions"
        payload = self._build_payload(frame, mime_type)
        try:
            response = self.session.post(url, headers=self.headers, json=payload, timeout=self.timeout_seconds)
            if response.status_code >= 400:
                try:
                    error_payload = response.json()
                except ValueError:
                    error_payload = response.text
                raise RuntimeError(f"HTTP {response.status_code}: {error_payload}")
            text = self._extract_output_text(response.json())
            self.last_raw_text = text
            report = Report.model_validate(self._normalize_parsed(self._parse_json(text)))
        except (requests.RequestException, RuntimeError, ValueError, ValidationError) as exc:
            message = sanitize_error_message(f"Failed to generate report: {exc}")
            logger.error(message)
            raise InferenceError(message) from exc
        return self._reconcile_alert(report)
