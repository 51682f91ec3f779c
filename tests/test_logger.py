import logging

from tooldex.logger import setup_logging


def test_setup_logging_writes_to_file(tmp_path):
    log_file = tmp_path / "logs" / "tooldex.log"
    root = logging.getLogger()
    previous_handlers = list(root.handlers)
    previous_level = root.level
    try:
        setup_logging("DEBUG", log_file)
        logging.getLogger("tooldex.test").debug("indexed %d tools", 3)
        for handler in root.handlers:
            handler.flush()

        assert log_file.exists()
        assert "indexed 3 tools" in log_file.read_text(encoding="utf-8")
        assert logging.getLogger("urllib3").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in previous_handlers:
            root.addHandler(handler)
        root.setLevel(previous_level)


def test_setup_logging_without_file_is_noop():
    root = logging.getLogger()
    before = list(root.handlers)
    setup_logging("INFO", None)
    assert root.handlers == before
