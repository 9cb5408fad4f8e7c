import logging

from shelf.logging_config import AuditFormatter, audit


def _capture(logger_name):
    records = []

    class ListHandler(logging.Handler):
        def emit(self, record):
            records.append(record)

    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(ListHandler())
    return logger, records


def test_audit_keeps_fields_structured():
    logger, records = _capture("shelfkeeper.test.audit")

    audit(logger, "book_created", book_id=7, owner_id=3)

    (record,) = records
    assert record.getMessage() == "book_created"
    assert record.event == "book_created"
    assert record.audit == {"book_id": 7, "owner_id": 3}


def test_audit_formatter_renders_sorted_fields():
    logger, records = _capture("shelfkeeper.test.formatter")
    audit(logger, "login_failed", level=logging.WARNING, reason="unknown_email", account_id=None)
    logger.info("plain message")

    formatter = AuditFormatter("%(levelname)s %(message)s")

    assert formatter.format(records[0]) == "WARNING login_failed account_id=None reason=unknown_email"
    assert formatter.format(records[1]) == "INFO plain message"
