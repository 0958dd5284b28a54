from loguru import logger

from warmer.utils.logger import format_event, log_event


def test_format_event_renders_keys_and_values():
    message = format_event(
        "worker",
        "BATCH-FINISHED",
        {"batch_nr": 3, "avg_transfer_time": 1.23456, "host": "shop.test", "throttled": True, "group": None},
    )

    assert message == (
        "[WORKER:BATCH-FINISHED] Batch-Nr: 3, Avg-Transfer-Time: 1.23, "
        "Host: 'shop.test', Throttled: yes, Group: null"
    )


def test_format_event_with_note_only():
    assert format_event("Sessions", "INVALIDATED", note="logged out") == "[SESSIONS:INVALIDATED] logged out"


def test_log_event_keeps_braces_literal():
    messages = []
    sink_id = logger.add(lambda msg: messages.append(msg.record["message"]), level="DEBUG")
    try:
        log_event("INFO", "Executor", "JOB-FAILED", {"url": "https://shop.test/?q={x}"})
    finally:
        logger.remove(sink_id)

    assert messages == ["[EXECUTOR:JOB-FAILED] Url: 'https://shop.test/?q={x}'"]
