import json
import logging
import os

import pytest

from gitedit_server import observability as obs
from gitedit_server.observability import (
    LOGGER_NAME,
    _get_log_file_path,
    _get_log_level,
    configure_from,
    log_action,
    log_debug,
    log_error,
    log_warning,
    timeit,
)
from gitedit.config_schema import LoggingConfig


@pytest.fixture(autouse=True)
def reset_logger():
    """Reset logger state between tests."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    obs._logger_initialized = False
    obs._session_start = None
    yield
    logger.handlers.clear()
    obs._logger_initialized = False
    obs._session_start = None


def test_log_action_emits_json(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    log_action("edition.commit", outcome="ok", duration_ms=123, repo="r1", branch="editor-1")
    data = json.loads(caplog.records[-1].message)
    assert data["action"] == "edition.commit"
    assert data["outcome"] == "ok"
    assert data["duration_ms"] == 123
    assert data["repo"] == "r1"
    assert data["branch"] == "editor-1"


def test_timeit_success_logs(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    with timeit("test.block", repo="r2"):
        pass
    data = json.loads(caplog.records[-1].message)
    assert data["action"] == "test.block"
    assert data["outcome"] == "ok"
    assert data["repo"] == "r2"
    assert isinstance(data["duration_ms"], (int, float))


def test_timeit_result_info(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    with timeit("test.info") as info:
        info["outcome"] = "failed"
        info["branch"] = "publish-1"
    data = json.loads(caplog.records[-1].message)
    assert data["outcome"] == "failed"
    assert data["branch"] == "publish-1"


def test_timeit_error_logs_and_reraises(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    with pytest.raises(RuntimeError):
        with timeit("test.err", repo="r3"):
            raise RuntimeError("boom")
    data = json.loads(caplog.records[-1].message)
    assert data["outcome"] == "error"
    assert data["error"] == "RuntimeError"


def test_log_debug_with_fields(caplog, monkeypatch):
    monkeypatch.setenv("GITEDIT_LOG_LEVEL", "DEBUG")
    caplog.set_level(logging.DEBUG, logger=LOGGER_NAME)
    log_debug("GIT_OP_START: fetch origin", repo="r4")
    msg = caplog.records[-1].message
    assert "GIT_OP_START: fetch origin" in msg
    assert '"repo":"r4"' in msg


def test_log_debug_not_emitted_at_info(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    log_debug("should not appear")
    assert not [r for r in caplog.records if r.levelno == logging.DEBUG]


def test_warning_and_error_levels(caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER_NAME)
    log_warning("test warning")
    assert caplog.records[-1].levelno == logging.WARNING
    log_error("test error", kind="TransportError")
    assert caplog.records[-1].levelno == logging.ERROR
    assert '"kind":"TransportError"' in caplog.records[-1].message


def test_log_level_from_env(monkeypatch):
    monkeypatch.setenv("GITEDIT_LOG_LEVEL", "WARNING")
    assert _get_log_level() == logging.WARNING
    monkeypatch.setenv("GITEDIT_LOG_LEVEL", "nonsense")
    assert _get_log_level() == logging.INFO


def test_disable_file_logging(monkeypatch):
    monkeypatch.setenv("GITEDIT_LOG_DISABLE_FILE", "1")
    assert _get_log_file_path() is None


def test_custom_log_dir(monkeypatch, tmp_path):
    monkeypatch.delenv("GITEDIT_LOG_DISABLE_FILE", raising=False)
    custom_dir = tmp_path / "custom_logs"
    monkeypatch.setenv("GITEDIT_LOG_DIR", str(custom_dir))
    path = _get_log_file_path()
    assert path is not None
    assert path.parent == custom_dir
    assert path.name.startswith("gitedit_")


def test_configure_from_does_not_override_env(monkeypatch):
    monkeypatch.setenv("GITEDIT_LOG_LEVEL", "ERROR")
    monkeypatch.delenv("GITEDIT_LOG_BACKUP_COUNT", raising=False)
    monkeypatch.delenv("GITEDIT_LOG_MAX_BYTES", raising=False)
    configure_from(LoggingConfig(level="DEBUG", backup_count=2))
    assert _get_log_level() == logging.ERROR
    assert os.environ["GITEDIT_LOG_BACKUP_COUNT"] == "2"
