"""
Logging utilities shared by the API, the client processor, the background
worker and the parsing service.

Usernames, playlist names and stream titles all come from operators or from
third-party M3U files, so they may contain newlines that would forge extra
log lines (CWE-117). install_safe_logging() escapes them in log arguments.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_ORIGINAL_FACTORY = logging.getLogRecordFactory()


def _sanitize_value(value):
    """Escape CR/LF in string values."""
    if isinstance(value, str):
        return value.replace('\r\n', '\\r\\n').replace('\r', '\\r').replace('\n', '\\n')
    return value


def _safe_record_factory(*args, **kwargs):
    record = _ORIGINAL_FACTORY(*args, **kwargs)
    if record.args:
        if isinstance(record.args, dict):
            record.args = {k: _sanitize_value(v) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(_sanitize_value(a) for a in record.args)
    return record


def install_safe_logging():
    """Install the sanitizing LogRecord factory. Call once per process."""
    logging.setLogRecordFactory(_safe_record_factory)


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging for a panel process entry point.

    Installs the safe record factory and a single stream handler; unknown
    level names fall back to INFO.
    """
    install_safe_logging()
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
