"""Unit tests for utils/logging.py."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from pkginstaller.utils.logging import setup_logger


@pytest.mark.unit
class TestSetupLogger:
    """Test setup_logger function."""

    @pytest.fixture(autouse=True)
    def cleanup_loggers(self):
        """Close handlers of loggers created by a test."""
        created = []
        yield created
        for name in created:
            lg = logging.getLogger(name)
            for h in list(lg.handlers):
                h.close()
                lg.removeHandler(h)

    def _unique_name(self, suffix: str) -> str:
        return f"test_pkginstaller_logger_{suffix}"

    def test_creates_log_directory(self, tmp_path, cleanup_loggers):
        log_dir = tmp_path / "new_logs" / "subdir"
        name = self._unique_name("dir")
        cleanup_loggers.append(name)

        setup_logger(name, log_dir / "test.log")

        assert log_dir.exists()

    def test_level_info_by_default(self, tmp_path, cleanup_loggers):
        name = self._unique_name("level_default")
        cleanup_loggers.append(name)

        logger = setup_logger(name, tmp_path / "test.log")

        assert logger.level == logging.INFO

    @pytest.mark.parametrize("level", ["DEBUG", "debug", logging.DEBUG])
    def test_level_by_name_or_number(self, tmp_path, cleanup_loggers, level):
        name = self._unique_name(f"level_{level}")
        cleanup_loggers.append(name)

        logger = setup_logger(name, tmp_path / "test.log", level=level)

        assert logger.level == logging.DEBUG

    def test_adds_file_and_console_handlers(self, tmp_path, cleanup_loggers):
        name = self._unique_name("handlers")
        cleanup_loggers.append(name)

        logger = setup_logger(name, tmp_path / "test.log", max_bytes=1024, backup_count=5)

        file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        console_handlers = [
            h for h in logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert len(console_handlers) == 1
        assert file_handlers[0].maxBytes == 1024
        assert file_handlers[0].backupCount == 5

    def test_no_duplicate_handlers_on_second_call(self, tmp_path, cleanup_loggers):
        name = self._unique_name("no_dup")
        cleanup_loggers.append(name)

        logger1 = setup_logger(name, tmp_path / "test.log")
        handler_count = len(logger1.handlers)
        logger2 = setup_logger(name, tmp_path / "test.log")

        assert logger1 is logger2
        assert len(logger2.handlers) == handler_count

    def test_child_loggers_write_to_file(self, tmp_path, cleanup_loggers):
        """Service loggers are children of the configured logger."""
        name = self._unique_name("children")
        cleanup_loggers.append(name)

        logger = setup_logger(name, tmp_path / "test.log")
        logging.getLogger(f"{name}.reconciler").info("handled stage PushImage")
        for h in logger.handlers:
            h.flush()

        content = (tmp_path / "test.log").read_text()
        assert "handled stage PushImage" in content
        assert f"{name}.reconciler" in content

    def test_unknown_level_name_is_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown log level"):
            setup_logger(self._unique_name("bad_level"), tmp_path / "test.log", level="VERBOSE")

    def test_warn_alias_is_accepted(self, tmp_path, cleanup_loggers):
        name = self._unique_name("warn")
        cleanup_loggers.append(name)

        logger = setup_logger(name, tmp_path / "test.log", level="warn")

        assert logger.level == logging.WARNING

    def test_second_call_updates_handler_levels(self, tmp_path, cleanup_loggers):
        name = self._unique_name("relevel")
        cleanup_loggers.append(name)

        setup_logger(name, tmp_path / "test.log", level="INFO")
        logger = setup_logger(name, tmp_path / "test.log", level="DEBUG")

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        assert all(h.level == logging.DEBUG for h in logger.handlers)

    def test_second_call_moves_log_file(self, tmp_path, cleanup_loggers):
        name = self._unique_name("move")
        cleanup_loggers.append(name)

        setup_logger(name, tmp_path / "first.log")
        logger = setup_logger(name, tmp_path / "second" / "installer.log")
        logger.info("written after move")
        for h in logger.handlers:
            h.flush()

        file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert "written after move" in (tmp_path / "second" / "installer.log").read_text()
        assert "written after move" not in (tmp_path / "first.log").read_text()
