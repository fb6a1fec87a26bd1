import contextlib
import logging
import logging.handlers

from drive_passport.logging_setup import configure_logging


@contextlib.contextmanager
def _preserved_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    try:
        yield
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)


def test_console_and_file_handlers(tmp_path) -> None:
    log_file = tmp_path / "logs" / "drive_passport.log"

    with _preserved_root_logger():
        root = configure_logging(log_file=log_file)
        logging.getLogger("drive_passport.test").info("trip started")

        console, rotating = root.handlers
        assert console.level == logging.WARNING
        assert isinstance(rotating, logging.handlers.RotatingFileHandler)
        assert rotating.maxBytes == 1024 * 1024
        rotating.flush()
        assert "trip started" in log_file.read_text()


def test_verbose_and_repeat_calls() -> None:
    with _preserved_root_logger():
        configure_logging()
        root = configure_logging(verbose=True)

        assert len(root.handlers) == 1
        assert root.handlers[0].level == logging.DEBUG
        assert root.level == logging.DEBUG
        assert logging.getLogger("urllib3").level == logging.WARNING
