from pathlib import Path
import os

from dotenv import dotenv_values, load_dotenv

# Load .env once at import for local/dev runs.
load_dotenv()

ROOT = Path(__file__).resolve().parent.parent
WEB_DIR = ROOT / "web"
STATIC_DIR = WEB_DIR / "static"

CAMERA_DENIED_MESSAGE = "Camera access is required. Please enable permissions and try again."


def _dotenv_value(*keys):
    values = dotenv_values(ROOT / ".env")
    for key in keys:
        if values.get(key):
            return values[key]
    return None


def get_capture_interval_seconds():
    return float(os.getenv("CAPTURE_INTERVAL_SECONDS", "10"))


def get_history_limit():
    return int(os.getenv("HISTORY_LIMIT", "10"))


def get_jpeg_quality():
    return int(os.getenv("JPEG_QUALITY", "80"))


def get_camera_device():
    value = os.getenv("CAMERA_DEVICE", "0")
    # Numeric values are device indexes, anything else is a path or stream URL.
    return int(value) if value.isdigit() else value


def get_camera_warmup_seconds():
    return float(os.getenv("CAMERA_WARMUP_SECONDS", "3"))


def get_vlm_timeout_seconds():
    return int(os.getenv("VLM_TIMEOUT_SECONDS", "30"))


def get_vlm_max_tokens():
    return int(os.getenv("VLM_MAX_TOKENS", "512"))


def get_vlm_model():
    return os.getenv("VLM_MODEL", "gpt-4o-mini")


def get_vlm_api_key():
    return (
        _dotenv_value("OPENAI_API_KEY", "VLM_API_KEY")
        or os.getenv("OPENAI_API_KEY")
        or os.getenv("VLM_API_KEY")
    )


def get_vlm_base_url():
    return _dotenv_value("OPENAI_BASE_URL", "VLM_BASE_URL") or os.getenv(
        "OPENAI_BASE_URL", os.getenv("VLM_BASE_URL", "https://api.openai.com/v1")
    )


def get_api_host():
    return os.getenv("API_HOST", "127.0.0.1")


def get_api_port():
    return int(os.getenv("API_PORT", "8000"))


def get_log_level():
    return os.getenv("LOG_LEVEL", "INFO").upper()
