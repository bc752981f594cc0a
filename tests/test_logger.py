# File: tests/test_logger.py
import json
import logging

from crawl_service.utils.config import LoggingConfig
from crawl_service.utils.logger import JSONFormatter, get_crawler_logger, setup_logging


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("crawl", logging.INFO, __file__, 1, "fetched %s", ("x",), None)
    record.job_id = "12"

    entry = json.loads(JSONFormatter().format(record))

    assert entry["message"] == "fetched x"
    assert entry["level"] == "INFO"
    assert entry["job_id"] == "12"


def test_adapter_prefixes_job_id(caplog):
    log = get_crawler_logger("crawl_service.test", job_id="5")

    with caplog.at_level(logging.INFO, logger="crawl_service.test"):
        log.info("started")

    assert caplog.records[-1].getMessage() == "[job 5] started"
    assert caplog.records[-1].job_id == "5"


def test_setup_logging_writes_files(tmp_path):
    config = LoggingConfig(level="DEBUG", file=str(tmp_path / "logs" / "crawler.log"))
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level

    try:
        setup_logging(config, enable_json=True)
        logging.getLogger("crawl_service.test").error("boom")
        for handler in root.handlers:
            handler.flush()

        assert (tmp_path / "logs" / "crawler.log").exists()
        assert "boom" in (tmp_path / "logs" / "errors.log").read_text()
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
