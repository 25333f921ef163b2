"""View-model derivation for the dashboard and the terminal watcher.

Every value shown to a user is computed here from a ``SessionState``;
nothing in this module keeps state of its own.
"""

from carevision.models import AppStatus

VIEW_IDLE = "idle"
VIEW_INITIALIZING = "initializing"
VIEW_REPORT = "report"
VIEW_ERROR = "error"

TIMELINE_EMPTY_TEXT = "No events recorded yet."


def _select_view(state):
    if state.status == AppStatus.ERROR:
        return VIEW_ERROR
    if state.status == AppStatus.MONITORING:
        return VIEW_REPORT if state.current_report is not None else VIEW_INITIALIZING
    return VIEW_IDLE


def _report_block(report):
    if report.is_alert:
        banner = {"title": "ALERT TRIGGERED", "severity": "alert"}
    else:
        banner = {"title": "Status: Normal", "severity": "normal"}
    return {
        "banner": banner,
        "recommendation": report.recommendation,
        "emotion": report.emotion.value,
        "motion": report.motion.value,
        "summary": report.summary,
        "alert_status": report.alert_status.value,
    }


def _toggle(state):
    if state.is_processing:
        label = "ANALYZING..."
    elif state.status == AppStatus.MONITORING:
        label = "STOP MONITORING"
    else:
        label = "START MONITORING"
    return {
        "label": label,
        "action": "stop" if state.status == AppStatus.MONITORING else "start",
        "disabled": state.is_processing,
    }


def build_view(state):
    view = _select_view(state)
    payload = {
        "status": state.status.value,
        "view": view,
        "is_processing": state.is_processing,
        "feed_online": state.status == AppStatus.MONITORING,
        "toggle": _toggle(state),
        "report": None,
        "error": None,
        "show_timeline": state.status == AppStatus.MONITORING or bool(state.history),
        "timeline": [event.to_dict() for event in state.history],
        "timeline_empty_text": TIMELINE_EMPTY_TEXT,
    }
    if view == VIEW_REPORT:
        payload["report"] = _report_block(state.current_report)
    elif view == VIEW_ERROR:
        payload["error"] = {"title": "Monitoring Failed", "message": state.error_message or ""}
    return payload


def render_text(state):
    view = build_view(state)
    lines = [f"[{view['status']}]"]
    if view["view"] == VIEW_IDLE:
        lines.append("System Idle - start monitoring to begin patient analysis and receive alerts.")
    elif view["view"] == VIEW_INITIALIZING:
        lines.append("INITIALIZING ANALYSIS... acquiring first reading from the live feed.")
    elif view["view"] == VIEW_ERROR:
        lines.append(f"{view['error']['title']}: {view['error']['message']}")
    else:
        report = view["report"]
        lines.append(f"{report['banner']['title']} - {report['recommendation']}")
        lines.append(f"Emotion: {report['emotion']} | Motion: {report['motion']}")
        lines.append(f"Summary: {report['summary']}")
    if view["show_timeline"]:
        lines.append("Event Timeline:")
        if not view["timeline"]:
            lines.append(f"  {view['timeline_empty_text']}")
        for event in view["timeline"]:
            lines.append(f"  {event['timestamp']}  {event['emotion']} / {event['motion']}  \"{event['summary']}\"")
    return "\n".join(lines)
