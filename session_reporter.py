import csv
import json
import time
from pathlib import Path

from logging_utils import log_event

SESSION_FIELDS = [
    "session_started_at",
    "session_ended_at",
    "seconds",
    "frames",
    "events_total",
    "events_footstep",
    "events_friction",
    "events_generic",
    "dropped_conflicts",
    "energy_min",
    "energy_max",
    "energy_mean",
    "flux_min",
    "flux_max",
    "flux_mean",
    "footstep_threshold",
    "friction_threshold",
    "generic_threshold",
]

EVENT_FIELDS = [
    "session_started_at",
    "type",
    "timestamp",
    "confidence",
    "freq_min",
    "freq_max",
    "energy",
    "spectral_flux",
]


class SessionReporter:
    """Persists per-session monitoring summaries and their event logs to JSON and CSV."""

    def __init__(self, report_dir: Path, max_sessions: int = 200):
        self.report_dir = Path(report_dir)
        self.report_dir.mkdir(parents=True, exist_ok=True)
        self.json_path = self.report_dir / "monitor_session_report.json"
        self.csv_path = self.report_dir / "monitor_session_report.csv"
        self.events_csv_path = self.report_dir / "monitor_events.csv"
        self.max_sessions = max(1, int(max_sessions))

    def _load_existing_sessions(self) -> list[dict]:
        if not self.json_path.exists():
            return []
        try:
            with open(self.json_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, ValueError) as e:
            log_event("WARN", "Report", "Existing report unreadable, starting fresh", error=e)
            return []
        sessions = payload.get("sessions", []) if isinstance(payload, dict) else []
        return sessions if isinstance(sessions, list) else []

    def _to_builtin(self, value):
        if isinstance(value, dict):
            return {str(k): self._to_builtin(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._to_builtin(v) for v in value]

        tolist = getattr(value, "tolist", None)
        if callable(tolist):
            return self._to_builtin(tolist())

        return value

    @staticmethod
    def _event_row(started_at, event: dict) -> dict:
        freq = event.get("frequency_range") or {}
        details = event.get("details") or {}
        return {
            "session_started_at": started_at,
            "type": event.get("type", ""),
            "timestamp": event.get("timestamp", ""),
            "confidence": event.get("confidence", ""),
            "freq_min": freq.get("min", ""),
            "freq_max": freq.get("max", ""),
            "energy": details.get("energy", ""),
            "spectral_flux": details.get("spectral_flux", ""),
        }

    def save_session(self, session_summary: dict) -> None:
        sessions = self._load_existing_sessions()
        sessions.append(self._to_builtin(session_summary))
        if len(sessions) > self.max_sessions:
            sessions = sessions[-self.max_sessions:]

        payload = {
            "generated_at": time.time(),
            "session_count": len(sessions),
            "latest": sessions[-1],
            "sessions": sessions,
        }

        with open(self.json_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

        with open(self.csv_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=SESSION_FIELDS)
            writer.writeheader()
            for row in sessions:
                writer.writerow({key: row.get(key, "") for key in SESSION_FIELDS})

        with open(self.events_csv_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=EVENT_FIELDS)
            writer.writeheader()
            for row in sessions:
                for event in row.get("events", []):
                    writer.writerow(self._event_row(row.get("session_started_at", ""), event))

        log_event("INFO", "Report", "Session report written", path=self.json_path,
                  sessions=len(sessions))
