"""Tests for the pipeline coordinator."""

import logging

from sest.cursor import FileCursor
from sest.extractor import ExtractionRule
from sest.pipeline import Pipeline


def _append(path, data: bytes):
    with open(path, "ab") as f:
        f.write(data)


class _CountingRule(ExtractionRule):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.buffers = []

    def extract(self, buffer, source=""):
        self.buffers.append(buffer)
        return super().extract(buffer, source)


class TestExtractionStep:
    def test_login_scenario_with_dot_template(self, tmp_path):
        log = tmp_path / "app.log"
        log.write_bytes(b"")
        path = str(log)
        rule = ExtractionRule("login", r"LOGIN user=(\w+)", "{{.}} logged in",
                              event_type="user.login", channel_name="audit")
        delivered = []
        pipeline = Pipeline({path: FileCursor(path)}, [rule], delivered.append)

        _append(path, b"LOGIN user=alice\n")
        assert pipeline.handle_write(path) == 1

        assert [p.text for p in delivered] == ["alice logged in"]
        assert delivered[0].event_type == "user.login"
        assert delivered[0].channel_name == "audit"
        pipeline.close()

    def test_login_scenario(self, tmp_path):
        log = tmp_path / "app.log"
        log.write_bytes(b"")
        path = str(log)
        rule = ExtractionRule("login", r"LOGIN user=(\w+)", "$1 logged in",
                              event_type="user.login", channel_name="audit")
        delivered = []
        pipeline = Pipeline({path: FileCursor(path)}, [rule], delivered.append)

        _append(path, b"LOGIN user=alice\n")
        assert pipeline.handle_write(path) == 1

        assert len(delivered) == 1
        assert delivered[0].text == "alice logged in"
        assert delivered[0].event_type == "user.login"
        assert delivered[0].channel_name == "audit"
        assert delivered[0].source == path
        pipeline.close()

    def test_rules_run_in_order_over_same_buffer(self, tmp_path):
        log = tmp_path / "app.log"
        log.write_bytes(b"ERROR: disk\nLOGIN user=bob\n")
        path = str(log)
        rules = [
            _CountingRule("login", r"LOGIN user=(\w+)", "login {{ groups[0] }}"),
            _CountingRule("error", r"ERROR: (\w+)", "error {{ groups[0] }}"),
        ]
        delivered = []
        pipeline = Pipeline({path: FileCursor(path)}, rules, delivered.append)
        pipeline.handle_write(path)
        assert [p.text for p in delivered] == ["login bob", "error disk"]
        assert rules[0].buffers == rules[1].buffers
        pipeline.close()

    def test_bytes_never_seen_twice(self, tmp_path):
        log = tmp_path / "app.log"
        log.write_bytes(b"")
        path = str(log)
        rule = _CountingRule("err", r"ERROR: (\w+)", "{{ groups[0] }}")
        delivered = []
        pipeline = Pipeline({path: FileCursor(path)}, [rule], delivered.append)

        _append(path, b"ERROR: one\n")
        pipeline.handle_write(path)
        _append(path, b"ERROR: two\n")
        pipeline.handle_write(path)
        pipeline.handle_write(path)

        assert [p.text for p in delivered] == ["one", "two"]
        assert rule.buffers == [b"ERROR: one\n", b"ERROR: two\n", b""]
        pipeline.close()

    def test_render_failure_isolated_to_match(self, tmp_path):
        log = tmp_path / "app.log"
        log.write_bytes(b"n=5 n=0 n=4\n")
        path = str(log)
        rules = [
            ExtractionRule("div", r"n=(\d+)", "{{ 100 // (groups[0] | int) }}"),
            ExtractionRule("echo", r"n=(\d+)", "{{ groups[0] }}"),
        ]
        delivered = []
        pipeline = Pipeline({path: FileCursor(path)}, rules, delivered.append)
        assert pipeline.handle_write(path) == 5
        assert [p.text for p in delivered] == ["20", "25", "5", "0", "4"]
        assert pipeline.stats.render_errors == 1
        pipeline.close()


class TestFailures:
    def test_unregistered_path(self, tmp_path, caplog):
        rule = _CountingRule("any", r".", "x")
        delivered = []
        pipeline = Pipeline({}, [rule], delivered.append)
        with caplog.at_level(logging.DEBUG):
            assert pipeline.handle_write(str(tmp_path / "unknown.log")) == 0
        assert rule.buffers == []
        assert delivered == []
        assert pipeline.stats.unregistered == 1
        assert "untracked" in caplog.text

    def test_read_failure_skips_rules(self, tmp_path, caplog):
        log = tmp_path / "app.log"
        log.write_bytes(b"data\n")
        path = str(log)
        cursor = FileCursor(path)
        cursor.close()
        rule = _CountingRule("any", r".", "x")
        pipeline = Pipeline({path: cursor}, [rule], lambda p: None)
        with caplog.at_level(logging.WARNING):
            assert pipeline.run_extraction_step(cursor) == 0
        assert rule.buffers == []
        assert pipeline.stats.read_errors == 1
        assert path in caplog.text

    def test_empty_read_is_not_an_error(self, tmp_path):
        log = tmp_path / "app.log"
        log.write_bytes(b"")
        path = str(log)
        rules = [_CountingRule("any", r".", "x"), _CountingRule("start", r"^", "start")]
        delivered = []
        pipeline = Pipeline({path: FileCursor(path)}, rules, delivered.append)
        assert pipeline.handle_write(path) == 1
        assert [r.buffers for r in rules] == [[b""], [b""]]
        assert [p.text for p in delivered] == ["start"]
        assert pipeline.stats.reads == 1
        assert pipeline.stats.read_errors == 0
        pipeline.close()

    def test_close_closes_all_cursors(self, tmp_path):
        paths = []
        for name in ("a.log", "b.log"):
            (tmp_path / name).write_bytes(b"")
            paths.append(str(tmp_path / name))
        registry = {p: FileCursor(p) for p in paths}
        pipeline = Pipeline(registry, [], lambda p: None)
        pipeline.close()
        pipeline.close()
        assert all(c.closed for c in registry.values())
