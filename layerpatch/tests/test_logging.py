"""Unit tests for logging configuration."""

import logging
from io import StringIO

from layerpatch.logging import level_from_env, setup_logging


def _layerpatch_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, "_layerpatch", False)]


def _cleanup(logger: logging.Logger) -> None:
    for handler in _layerpatch_handlers(logger):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_logging_creates_handler(self):
        """setup_logging attaches a handler to the layerpatch logger."""
        logger = logging.getLogger("layerpatch")
        _cleanup(logger)

        setup_logging()

        assert len(_layerpatch_handlers(logger)) == 1
        _cleanup(logger)

    def test_repeated_setup_keeps_one_handler(self):
        """Calling setup_logging twice does not duplicate output."""
        logger = logging.getLogger("layerpatch")
        _cleanup(logger)

        setup_logging()
        setup_logging()

        assert len(_layerpatch_handlers(logger)) == 1
        _cleanup(logger)

    def test_setup_logging_with_custom_level(self):
        """setup_logging respects custom log level."""
        logger = logging.getLogger("layerpatch")

        setup_logging(level=logging.DEBUG)

        assert logger.level == logging.DEBUG
        _cleanup(logger)

    def test_default_level_from_environment(self, monkeypatch):
        """LAYERPATCH_LOG_LEVEL picks the level when none is passed."""
        monkeypatch.setenv("LAYERPATCH_LOG_LEVEL", "info")
        logger = logging.getLogger("layerpatch")

        setup_logging()

        assert logger.level == logging.INFO
        _cleanup(logger)

    def test_logger_propagate_is_false(self):
        """Logger propagation is disabled to avoid duplicate logs."""
        logger = logging.getLogger("layerpatch")

        setup_logging()

        assert logger.propagate is False
        _cleanup(logger)

    def test_setup_logging_formatter(self):
        """Records from child loggers reach the stream with level and name."""
        logger = logging.getLogger("layerpatch")
        stream = StringIO()

        setup_logging(level=logging.INFO, stream=stream)
        logging.getLogger("layerpatch.patches.orchestrator").info("applied %s", "01-a.patch")

        output = stream.getvalue()
        assert "INFO" in output
        assert "layerpatch.patches.orchestrator: applied 01-a.patch" in output
        _cleanup(logger)


class TestLevelFromEnv:
    """Tests for level_from_env."""

    def test_unset_uses_default(self, monkeypatch):
        monkeypatch.delenv("LAYERPATCH_LOG_LEVEL", raising=False)
        assert level_from_env() == logging.WARNING

    def test_unknown_name_uses_default(self, monkeypatch):
        monkeypatch.setenv("LAYERPATCH_LOG_LEVEL", "chatty")
        assert level_from_env(logging.ERROR) == logging.ERROR


class TestModuleLoggers:
    """Tests for the package's module-level loggers."""

    def test_module_logger_reaches_handler(self):
        """Loggers named after package modules write through setup_logging's handler."""
        logger = logging.getLogger("layerpatch")
        _cleanup(logger)
        stream = StringIO()

        setup_logging(logging.INFO, stream=stream)
        logging.getLogger("layerpatch.patches.orchestrator").info("Patch %s applied", "01-a.patch")

        assert "layerpatch.patches.orchestrator: Patch 01-a.patch applied" in stream.getvalue()
        _cleanup(logger)
