import logging
from logging.handlers import RotatingFileHandler

from socialmod.util.logger import (
    ColorFormatter,
    NOISY_LOGGERS,
    PromptToolkitHandler,
    get_log_filepath,
    get_logger,
    handle_exception,
    setup_logger,
    console_level,
    should_use_color,
)


class DummyStream:
    def __init__(self):
        self.written = []

    def write(self, msg):
        self.written.append(msg)

    def isatty(self):
        return True


def test_get_logger_returns_logger():
    logger = get_logger("test_logger")
    assert isinstance(logger, logging.Logger)
    assert any(isinstance(h, PromptToolkitHandler) for h in logger.handlers)
    assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)


def test_setup_logger_idempotent():
    logger1 = setup_logger("test_logger_idem")
    handler_count = len(logger1.handlers)
    logger2 = setup_logger("test_logger_idem")
    assert logger1 is logger2
    assert len(logger2.handlers) == handler_count


def test_color_formatter_applies_color():
    formatter = ColorFormatter("%(levelname)s %(message)s")
    record = logging.LogRecord("test", logging.WARNING, "", 0, "retrying message", None, None)
    formatted = formatter.format(record)
    assert "\033[33m" in formatted and "retrying message" in formatted


def test_should_use_color_true(monkeypatch):
    monkeypatch.setattr("sys.stderr", DummyStream())
    assert should_use_color() is True


def test_get_log_filepath_is_stable():
    assert get_log_filepath() == get_log_filepath()
    assert get_log_filepath().parent.exists()


def test_noisy_loggers_are_silenced():
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.ERROR


def test_handle_exception_logs_error(caplog):
    class DummyException(Exception):
        pass

    with caplog.at_level(logging.ERROR):
        try:
            raise DummyException("fail")
        except DummyException as exc:
            handle_exception(DummyException, exc, exc.__traceback__)
    assert any("Uncaught exception" in r.message for r in caplog.records)


def test_console_level_from_environment(monkeypatch):
    monkeypatch.setenv("SOCIALMOD_LOG_LEVEL", "debug")
    assert console_level() == logging.DEBUG
    monkeypatch.setenv("SOCIALMOD_LOG_LEVEL", "not-a-level")
    assert console_level() == logging.INFO
    monkeypatch.delenv("SOCIALMOD_LOG_LEVEL")
    assert console_level() == logging.INFO


def test_console_handler_uses_configured_level(monkeypatch):
    monkeypatch.setenv("SOCIALMOD_LOG_LEVEL", "WARNING")
    logger = setup_logger("test_logger_warning_console")
    (console,) = [h for h in logger.handlers if isinstance(h, PromptToolkitHandler)]
    assert console.level == logging.WARNING
    assert logger.propagate is False
