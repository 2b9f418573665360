"""Collection of diagnostic output from endpoint processes."""

import json
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


class LogCollector:
    """Collects endpoint output that is not protocol events.

    Entries come from non-JSON stdout lines ("stdout") and stderr lines
    ("stderr"), plus anything the harness itself wants on record.
    """

    def __init__(self):
        self.logs: List[Dict[str, Any]] = []

    def add_log(self, role: str, level: str, message: str, source: str = "harness",
                metadata: Optional[Dict[str, Any]] = None) -> None:
        """Record one line.

        Args:
            role: Endpoint role the line belongs to ("harness" for our own notes)
            level: info, warning, error or debug
            message: The line, without its trailing newline
            source: stdout, stderr or harness
            metadata: Extra fields kept alongside the entry
        """
        self.logs.append({
            "timestamp": datetime.now().isoformat(),
            "role": role,
            "level": level,
            "source": source,
            "message": message,
            "metadata": metadata or {},
        })

    def filter_logs(self, role: Optional[str] = None, level: Optional[str] = None,
                    source: Optional[str] = None) -> List[Dict[str, Any]]:
        """Entries matching every criterion given; None matches anything."""
        wanted = {"role": role, "level": level, "source": source}
        return [
            entry for entry in self.logs
            if all(value is None or entry[key] == value for key, value in wanted.items())
        ]

    def messages(self, role: str, source: Optional[str] = None) -> List[str]:
        """Just the text of ``role``'s entries, oldest first."""
        return [entry["message"] for entry in self.filter_logs(role=role, source=source)]

    def export_logs(self, output_path: Path) -> None:
        """Write all entries to ``output_path`` as a JSON array."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(self.logs, f, indent=2)

    def get_summary(self) -> Dict[str, Any]:
        """Totals by role, level and source, plus the time span covered."""
        if not self.logs:
            return {"total_logs": 0}

        return {
            "total_logs": len(self.logs),
            "roles": sorted({entry["role"] for entry in self.logs}),
            "log_levels": dict(Counter(entry["level"] for entry in self.logs)),
            "sources": dict(Counter(entry["source"] for entry in self.logs)),
            "first_log": self.logs[0]["timestamp"],
            "last_log": self.logs[-1]["timestamp"],
        }

    def clear(self) -> None:
        self.logs.clear()
