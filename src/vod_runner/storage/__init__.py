"""SQLite storage for the runner error log."""

from vod_runner.storage.error_log import ErrorLogRepository, ErrorRecordView, ErrorSink

__all__ = [
    "ErrorLogRepository",
    "ErrorRecordView",
    "ErrorSink",
]
