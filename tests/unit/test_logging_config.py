import io
import logging

import pytest

from src.logging_config import LOGGER_NAME, TqdmLoggingHandler, get_logger, setup_logger


@pytest.fixture
def restore_logger():
    logger = logging.getLogger(LOGGER_NAME)
    level, propagate = logger.level, logger.propagate
    yield logger
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(level)
    logger.propagate = propagate


def test_setup_logger_handlers(tmp_path, restore_logger):
    log_file = tmp_path / "logs" / "recovery.log"

    logger = setup_logger("debug", str(log_file), log_to_console=True)

    assert logger is restore_logger
    assert logger.level == logging.DEBUG
    assert logger.propagate is False
    assert any(isinstance(h, logging.FileHandler) for h in logger.handlers)
    assert any(isinstance(h, TqdmLoggingHandler) for h in logger.handlers)

    get_logger("pipeline").info("Recovered 'nav.home' from head")
    for handler in logger.handlers:
        handler.flush()
    assert "key_recovery.pipeline - INFO - Recovered 'nav.home' from head" in log_file.read_text(encoding='utf-8')


def test_setup_logger_twice_does_not_duplicate_handlers(tmp_path, restore_logger):
    setup_logger("INFO", str(tmp_path / "a.log"), log_to_console=False)
    logger = setup_logger("INFO", str(tmp_path / "a.log"), log_to_console=False)

    assert len(logger.handlers) == 1


def test_console_only_logging(restore_logger):
    logger = setup_logger("warning", None, log_to_console=True)

    assert logger.level == logging.WARNING
    assert [type(h) for h in logger.handlers] == [TqdmLoggingHandler]


def test_no_handlers_configured_stays_silent(restore_logger):
    logger = setup_logger("INFO", "", log_to_console=False)

    assert [type(h) for h in logger.handlers] == [logging.NullHandler]


def test_tqdm_handler_writes_to_given_stream():
    stream = io.StringIO()
    handler = TqdmLoggingHandler(stream=stream)
    handler.setFormatter(logging.Formatter('%(levelname)s %(message)s'))

    handler.emit(logging.LogRecord("key_recovery.cache", logging.INFO, __file__, 1, "Loaded %d file(s)", (3,), None))

    assert stream.getvalue() == "INFO Loaded 3 file(s)\n"
