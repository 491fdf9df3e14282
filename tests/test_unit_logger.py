import json
import logging

from campaign_dispatch.utils.logger import JSONFormatter, get_logger


class _Collect(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)


def test_json_formatter_lifts_correlation_keys():
    record = logging.makeLogRecord({
        "name": "campaign_dispatch.audit",
        "levelno": logging.INFO,
        "levelname": "INFO",
        "msg": "event job_done",
        "context": {"job_id": "j1", "worker_id": "w1", "sent": 3},
    })
    entry = json.loads(JSONFormatter().format(record))
    assert entry["job_id"] == "j1"
    assert entry["worker_id"] == "w1"
    assert entry["context"] == {"sent": 3}
    assert "request_id" not in entry


def test_bound_context_is_merged_into_each_call():
    handler = _Collect()
    target = logging.getLogger("campaign_dispatch.tests.bind")
    target.addHandler(handler)
    target.setLevel(logging.DEBUG)
    try:
        log = get_logger("tests.bind").bind(worker_id="w9")
        log.info("Claim pass finished", claimed=2, skipped=None)
    finally:
        target.removeHandler(handler)

    (record,) = handler.records
    assert record.name == "campaign_dispatch.tests.bind"
    assert record.context == {"worker_id": "w9", "claimed": 2}
