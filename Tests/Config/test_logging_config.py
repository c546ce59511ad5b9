# test_logging_config.py
#
#
# Imports
import logging
import logging.handlers
import sys
#
# Third-Party Imports
import pytest
from loguru import logger as loguru_logger
#
# Local Imports
from mfg_capture import config
from mfg_capture.Logging_Config import configure_logging
#
#######################################################################################################################
#
# Functions:


@pytest.fixture
def isolated_logging(tmp_path, monkeypatch):
    config_path = tmp_path / "config.toml"
    config_path.write_text(f'[database]\nlocal_db_path = "{tmp_path / "store.db"}"\n\n'
                           f'[logging]\nfile_log_level = "DEBUG"\n')
    monkeypatch.setenv(config.CONFIG_PATH_ENV_VAR, str(config_path))
    monkeypatch.setattr(config, "_CONFIG_CACHE", None)

    root_logger = logging.getLogger()
    saved_handlers = root_logger.handlers[:]
    saved_level = root_logger.level
    yield tmp_path
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in saved_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(saved_level)
    loguru_logger.remove()
    loguru_logger.add(sys.stderr)


def test_file_handler_receives_loguru_and_stdlib_records(isolated_logging):
    app_config = config.load_settings()

    rich_handler = configure_logging(app_config)

    assert rich_handler is None
    file_handlers = [h for h in logging.getLogger().handlers
                     if isinstance(h, logging.handlers.RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert logging.getLogger().level == logging.DEBUG

    loguru_logger.info("from loguru")
    logging.getLogger("mfg_capture.DB.Local_Records_DB").debug("from stdlib")
    file_handlers[0].flush()

    text = (isolated_logging / "mfg_capture.log").read_text(encoding="utf-8")
    assert "from loguru" in text
    assert "from stdlib" in text


def test_console_level_follows_general_section(isolated_logging):
    configure_logging({"general": {"log_level": "warning"}})
    file_handler = next(h for h in logging.getLogger().handlers
                        if isinstance(h, logging.handlers.RotatingFileHandler))
    assert file_handler.level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING

#
# End of test_logging_config.py
#######################################################################################################################
