import logging

from tutor_api.logging_config import configure_logging


def test_configure_logging_installs_single_stdout_handler() -> None:
    root_logger = logging.getLogger()
    saved_handlers = root_logger.handlers[:]
    saved_level = root_logger.level

    try:
        configure_logging("DEBUG")
        configure_logging("WARNING")

        assert len(root_logger.handlers) == 1
        assert root_logger.level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        for handler in saved_handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(saved_level)
