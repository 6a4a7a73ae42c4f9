"""Split event bus traffic from the rest of the log."""

import logging

EVENT_LOGGER = "transcriptflow.core.events"


def is_event_record(record: logging.LogRecord) -> bool:
    return record.name == EVENT_LOGGER or record.name.startswith(EVENT_LOGGER + ".")


class EventFilter(logging.Filter):
    """Pass records from the event bus loggers only."""

    def filter(self, record: logging.LogRecord) -> bool:
        return is_event_record(record)


class NonEventFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return not is_event_record(record)
