from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Emotion(str, Enum):
    CALM = "Calm"
    HAPPY = "Happy"
    SADNESS = "Sadness"
    FEAR = "Fear"
    PAIN = "Pain"
    DISTRESS = "Distress"
    NEUTRAL = "Neutral"


class Motion(str, Enum):
    NORMAL_ACTIVITY = "Normal Activity"
    LYING_STILL_RESTING = "Lying Still (Resting)"
    SUDDEN_MOVEMENT_POTENTIAL_FALL = "Sudden Movement (Potential Fall)"
    NO_PERSON_DETECTED = "No Person Detected"


class AlertStatus(str, Enum):
    NO_ALERT = "No Alert"
    ALERT_TRIGGERED = "Alert Triggered"


class AppStatus(str, Enum):
    IDLE = "IDLE"
    MONITORING = "MONITORING"
    ERROR = "ERROR"


ALERT_EMOTIONS = frozenset({Emotion.PAIN, Emotion.FEAR, Emotion.DISTRESS})


def alert_required(emotion, motion):
    return Emotion(emotion) in ALERT_EMOTIONS or Motion(motion) == Motion.SUDDEN_MOVEMENT_POTENTIAL_FALL


class Report(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    summary: str = Field(min_length=1)
    emotion: Emotion
    motion: Motion
    alert_status: AlertStatus = Field(alias="alertStatus")
    recommendation: str = Field(min_length=1)

    @field_validator("summary", "recommendation", mode="before")
    @classmethod
    def _strip_text(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def is_alert(self):
        return self.alert_status == AlertStatus.ALERT_TRIGGERED


@dataclass(frozen=True)
class Event:
    timestamp: str
    emotion: Emotion
    motion: Motion
    summary: str

    @classmethod
    def from_report(cls, report, when=None):
        when = when or datetime.now()
        return cls(
            timestamp=when.strftime("%H:%M:%S"),
            emotion=report.emotion,
            motion=report.motion,
            summary=report.summary,
        )

    def to_dict(self):
        return {
            "timestamp": self.timestamp,
            "emotion": self.emotion.value,
            "motion": self.motion.value,
            "summary": self.summary,
        }


@dataclass
class SessionState:
    status: AppStatus = AppStatus.IDLE
    is_processing: bool = False
    current_report: Report | None = None
    history: list[Event] = field(default_factory=list)
    error_message: str | None = None

    def reset(self):
        self.current_report = None
        self.history = []
        self.error_message = None

    def snapshot(self):
        return SessionState(
            status=self.status,
            is_processing=self.is_processing,
            current_report=self.current_report,
            history=list(self.history),
            error_message=self.error_message,
        )

    def to_dict(self):
        return {
            "status": self.status.value,
            "is_processing": self.is_processing,
            "current_report": (
                self.current_report.model_dump(mode="json", by_alias=True) if self.current_report else None
            ),
            "history": [event.to_dict() for event in self.history],
            "error_message": self.error_message,
        }
