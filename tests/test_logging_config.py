"""Tests for pegvault_core.logging_config."""

import json
import logging

import pytest

from pegvault_core.logging_config import _HumanFormatter, _JSONFormatter, setup_logging


def _record(msg="hello", **extra):
    record = logging.LogRecord("pegvault.test", logging.INFO, __file__, 1,
                               msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_fields(self):
        out = json.loads(_JSONFormatter().format(_record()))
        assert out["level"] == "INFO"
        assert out["logger"] == "pegvault.test"
        assert out["msg"] == "hello"
        assert "event" not in out

    def test_json_carries_event(self):
        event = {"name": "TokensSold", "fields": {"tokens_in": 5}}
        out = json.loads(_JSONFormatter().format(_record(event=event)))
        assert out["event"] == event

    def test_human_single_line(self):
        line = _HumanFormatter().format(_record())
        assert "pegvault.test: hello" in line
        assert "\n" not in line

    def test_human_inlines_event_fields(self):
        event = {"seq": 7, "name": "TokensSold",
                 "fields": {"seller": "alice", "tokens_in": 5}}
        line = _HumanFormatter().format(_record("TokensSold from vault", event=event))
        assert line.endswith("seller=alice tokens_in=5 (seq 7)")

    def test_chain_event_reaches_json_output(self, chain):
        captured = []

        class _Collect(logging.Handler):
            def emit(self, record):
                captured.append(json.loads(_JSONFormatter().format(record)))

        handler = _Collect(level=logging.DEBUG)
        chain_logger = logging.getLogger("pegvault.chain")
        old_level = chain_logger.level
        chain_logger.addHandler(handler)
        chain_logger.setLevel(logging.DEBUG)
        try:
            chain.emit("Ping", "somewhere", value=1)
        finally:
            chain_logger.removeHandler(handler)
            chain_logger.setLevel(old_level)
        assert captured[-1]["event"]["name"] == "Ping"
        assert captured[-1]["event"]["fields"] == {"value": 1}


class TestSetup:
    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_level_and_single_handler(self):
        setup_logging("DEBUG", "json")
        setup_logging("WARNING", "json")
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, _JSONFormatter)

    def test_log_file(self, tmp_path):
        path = tmp_path / "logs" / "pegvault.log"
        setup_logging("INFO", "human", str(path))
        logging.getLogger("pegvault.test").info("to file")
        for h in logging.getLogger().handlers:
            h.flush()
        line = path.read_text().strip().splitlines()[-1]
        assert json.loads(line)["msg"] == "to file"
        for h in logging.getLogger().handlers:
            h.close()
