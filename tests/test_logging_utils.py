import json
import logging

from dockerbot import logging_utils


def _record(msg="hello", **extra):
    record = logging.LogRecord("dockerbot.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_log_record_drops_none_and_renames_reserved_keys():
    data = logging_utils.log_record(name="x", image="python", exit_code=None)
    assert data == {"extra_name": "x", "image": "python"}


def test_correlation_filter_and_json_formatter():
    token = logging_utils.set_correlation_id("dockerbot-1234")
    try:
        record = _record(image="gcc:13")
        assert logging_utils.CorrelationIDFilter().filter(record)
    finally:
        logging_utils.reset_correlation_id(token)
    payload = json.loads(logging_utils.JSONFormatter().format(record))
    assert payload["message"] == "hello"
    assert payload["correlation_id"] == "dockerbot-1234"
    assert payload["image"] == "gcc:13"
    assert payload["level"] == "INFO"


def test_correlation_id_reset():
    token = logging_utils.set_correlation_id("abc")
    logging_utils.reset_correlation_id(token)
    record = _record()
    logging_utils.CorrelationIDFilter().filter(record)
    assert record.correlation_id is None


def test_setup_logging_level_and_json(monkeypatch):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        monkeypatch.setenv("DOCKERBOT_JSON_LOGS", "1")
        logging_utils.setup_logging(level="WARNING")
        assert root.level == logging.WARNING
        assert any(isinstance(h.formatter, logging_utils.JSONFormatter) for h in root.handlers)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_setup_logging_ignores_unreadable_config(tmp_path):
    bad = tmp_path / "logging.json"
    bad.write_text("{not json")
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        logging_utils.setup_logging(str(bad), level=logging.DEBUG)
        assert root.level == logging.DEBUG
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_get_logger_configures_root_once(monkeypatch):
    calls = []
    monkeypatch.setattr(logging_utils, "_def_configured", False)
    monkeypatch.setattr(logging_utils, "setup_logging", lambda **k: calls.append(k))
    root = logging.getLogger()
    saved = root.handlers[:]
    root.handlers[:] = []
    try:
        logger = logging_utils.get_logger("dockerbot.sample")
        logging_utils.get_logger("dockerbot.sample")
    finally:
        root.handlers[:] = saved
    assert logger.name == "dockerbot.sample"
    assert calls == [{"level": logging.INFO}]


def test_modules_log_through_get_logger():
    import importlib
    import inspect

    for name in ("cli", "client", "config", "container", "metrics", "pipeline", "pool", "sweep"):
        module = importlib.import_module(f"dockerbot.{name}")
        source = inspect.getsource(module)
        assert "logger = get_logger(__name__)" in source, name
        assert "logging.getLogger(__name__)" not in source, name
        assert module.logger.name == module.__name__
