"""Tests for structured logging."""

import json
import logging
from pathlib import Path

import pytest
import structlog

from beanstore.config.models import LoggingConfig, LogOutputConfig
from beanstore.core.logging import (
    configure_logging,
    get_log_file_path,
    get_logger,
)


class TestLoggingConfiguration:
    """Logging configuration tests."""

    def setup_method(self) -> None:
        """Reset structlog and stdlib logging before each test."""
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()

    def test_given_json_format_when_log_then_valid_json_output(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """JSON format produces valid JSON with required fields."""
        # Given
        configure_logging(json_format=True, level="INFO")
        logger = get_logger("test")

        # When
        logger.info("bean_inserted", type="book", id=1)

        # Then
        captured = capsys.readouterr()
        lines = [line for line in captured.err.strip().split("\n") if line]
        if lines:
            data = json.loads(lines[-1])
            assert data["event"] == "bean_inserted"
            assert data["type"] == "book"
            assert "timestamp" in data
            assert data["level"] == "info"

    def test_given_module_name_when_get_logger_then_binds_name(self) -> None:
        """Logger is bound to provided module name."""
        # Given
        configure_logging(json_format=False, level="INFO")

        # When
        logger = get_logger("beanstore.schema")

        # Then
        assert logger is not None

    def test_given_config_object_when_configure_then_takes_precedence(self, tmp_path: Path) -> None:
        """LoggingConfig object takes precedence over simple params."""
        # Given
        log_file = tmp_path / "test.log"
        config = LoggingConfig(
            level="DEBUG",
            outputs=[LogOutputConfig(format="json", destination=str(log_file))],
        )

        # When - config's DEBUG should override the level="ERROR" param
        configure_logging(config=config, json_format=False, level="ERROR")
        logger = get_logger()
        logger.debug("debug msg")

        # Then
        content = log_file.read_text()
        assert "debug msg" in content
        assert get_log_file_path() == log_file

    def test_given_multi_output_config_when_configure_then_logs_to_all(
        self, tmp_path: Path
    ) -> None:
        """Multiple outputs receive logs according to their levels."""
        # Given
        debug_file = tmp_path / "debug.log"
        info_file = tmp_path / "info.log"
        config = LoggingConfig(
            level="DEBUG",
            outputs=[
                LogOutputConfig(format="json", destination=str(info_file), level="INFO"),
                LogOutputConfig(format="json", destination=str(debug_file)),
            ],
        )

        # When
        configure_logging(config=config)
        logger = get_logger()
        logger.debug("debug only")
        logger.info("info msg")

        # Then - info_file should have INFO only
        info_content = info_file.read_text()
        assert "info msg" in info_content
        assert "debug only" not in info_content

        # Then - debug_file should have both
        debug_content = debug_file.read_text()
        assert "debug only" in debug_content
        assert "info msg" in debug_content

    def test_given_console_only_when_configure_then_no_log_file(self) -> None:
        """Console-only configuration leaves no log file path."""
        configure_logging(level="INFO")

        assert get_log_file_path() is None

    def test_given_debug_root_when_configure_then_sql_engine_stays_quiet(self) -> None:
        """SQLAlchemy statement logging is not enabled by the root level."""
        configure_logging(level="DEBUG")

        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_given_store_activity_when_file_output_then_events_recorded(
        self, tmp_path: Path
    ) -> None:
        """Schema changes made by a store are logged as snake_case events."""
        # Given
        from beanstore.instance import BeanStore

        log_file = tmp_path / "beans.log"
        configure_logging(
            config=LoggingConfig(
                level="DEBUG",
                outputs=[LogOutputConfig(format="json", destination=str(log_file))],
            )
        )

        # When
        with BeanStore() as store:
            book = store.dispense("book")
            book["title"] = "Dune"
            store.store(book)

        # Then
        lines = log_file.read_text().splitlines()
        events = [json.loads(line)["event"] for line in lines if line.startswith("{")]
        assert "table_created" in events
        assert "column_added" in events
        assert "bean_inserted" in events
