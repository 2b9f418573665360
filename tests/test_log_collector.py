"""Tests for the diagnostic log collector."""

import json

from msrp_harness.log_collector import LogCollector


class TestLogCollector:
    """Test cases for LogCollector."""

    def test_add_and_filter(self):
        collector = LogCollector()
        collector.add_log("active", "info", "Listening on 127.0.0.1:5000", source="stderr")
        collector.add_log("passive", "error", "boom", source="stderr")
        collector.add_log("active", "info", "plain text", source="stdout")

        assert len(collector.filter_logs(role="active")) == 2
        assert len(collector.filter_logs(level="error")) == 1
        assert collector.filter_logs(role="active", source="stdout")[0]["message"] == "plain text"

    def test_default_source_and_metadata(self):
        collector = LogCollector()
        collector.add_log("harness", "info", "Starting scenario")

        entry = collector.logs[0]
        assert entry["source"] == "harness"
        assert entry["metadata"] == {}
        assert "timestamp" in entry

    def test_summary(self):
        collector = LogCollector()
        assert collector.get_summary() == {"total_logs": 0}

        collector.add_log("passive", "info", "one")
        collector.add_log("active", "warning", "two")
        collector.add_log("active", "info", "three")
        summary = collector.get_summary()

        assert summary["total_logs"] == 3
        assert summary["roles"] == ["active", "passive"]
        assert summary["log_levels"] == {"info": 2, "warning": 1}
        assert summary["sources"] == {"harness": 3}

    def test_messages(self):
        collector = LogCollector()
        collector.add_log("active", "info", "booting", source="stdout")
        collector.add_log("active", "info", "[INFO] Listening", source="stderr")
        collector.add_log("passive", "info", "other", source="stdout")

        assert collector.messages("active") == ["booting", "[INFO] Listening"]
        assert collector.messages("active", source="stdout") == ["booting"]

    def test_export(self, tmp_path):
        collector = LogCollector()
        collector.add_log("active", "debug", "hello", metadata={"pid": 42})
        path = tmp_path / "nested" / "logs.json"

        collector.export_logs(path)

        data = json.loads(path.read_text())
        assert data[0]["message"] == "hello"
        assert data[0]["metadata"] == {"pid": 42}

    def test_clear(self):
        collector = LogCollector()
        collector.add_log("active", "info", "x")
        collector.clear()
        assert collector.logs == []
