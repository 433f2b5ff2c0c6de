"""Tests for logging setup."""

import logging

import pytest

from domain.models import LoggingSettings
from shared.logging_config import setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_defaults_to_info(restore_root_logger):
    setup_logging()
    assert restore_root_logger.level == logging.INFO
    assert len(restore_root_logger.handlers) == 1


def test_level_and_file(tmp_path, restore_root_logger):
    log_file = tmp_path / 'logs' / 'engine.log'
    setup_logging(LoggingSettings(level='debug', file=log_file))
    assert restore_root_logger.level == logging.DEBUG

    logging.getLogger('tiles.catalog').debug('Тест записи %d', 42)
    for handler in restore_root_logger.handlers:
        handler.flush()
    assert 'tiles.catalog - DEBUG - Тест записи 42' in log_file.read_text(encoding='utf-8')


def test_repeat_call_replaces_handlers(restore_root_logger):
    setup_logging()
    setup_logging()
    assert len(restore_root_logger.handlers) == 1
