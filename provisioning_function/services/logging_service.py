"""
Structured logging for the provisioning function.

Every record is written as one JSON object per line so that a log shipper can
pick out the pipeline stage and site URL of each progress line.
"""
import json
import logging
import logging.handlers
import os
import sys
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Any, Optional


LOG_RETENTION_DAYS = 30
CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class LogEntry:
    timestamp: str
    level: str
    logger_name: str
    message: str
    module: str
    function: str
    line_number: int
    stage: Optional[str] = None
    site_url: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None
    exception_info: Optional[Dict[str, Any]] = None


class JSONFormatter(logging.Formatter):
    """Renders log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        extra_data = getattr(record, 'extra_data', None)
        context = extra_data if isinstance(extra_data, dict) else {}

        entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created).isoformat(),
            level=record.levelname,
            logger_name=record.name,
            message=record.getMessage(),
            module=record.module,
            function=record.funcName,
            line_number=record.lineno,
            stage=context.get('stage'),
            site_url=context.get('site_url'),
            extra_data=extra_data,
            exception_info=self._exception_details(record.exc_info)
        )

        return json.dumps(asdict(entry), default=str)

    @staticmethod
    def _exception_details(exc_info) -> Optional[Dict[str, Any]]:
        if not exc_info or exc_info[0] is None:
            return None

        exc_type, exc_value, _ = exc_info
        return {
            'type': exc_type.__name__,
            'message': str(exc_value) if exc_value is not None else None,
            'cause': repr(exc_value.__cause__) if getattr(exc_value, '__cause__', None) else None,
            'traceback': traceback.format_exception(*exc_info)
        }


@contextmanager
def measure_stage(stage: str, logger: Optional[logging.Logger] = None,
                  extra_data: Optional[Dict[str, Any]] = None):
    """
    Log how long a pipeline stage took and whether it raised.

    The exception, if any, is re-raised unchanged; only the timing line is added.
    """
    logger = logger or logging.getLogger(__name__)
    started = time.perf_counter()
    outcome = {'success': True, 'error_message': None}

    try:
        yield
    except Exception as e:
        outcome = {'success': False, 'error_message': str(e)}
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        verb = 'completed' if outcome['success'] else 'failed'
        data = {'stage': stage, 'duration_ms': round(duration_ms, 1)}
        data.update(outcome)
        data.update(extra_data or {})
        logger.info(f"Stage {stage} {verb} in {duration_ms:.0f} ms", extra={'extra_data': data})


class LoggingService:
    """Installs the root handlers used by the function host."""

    def __init__(self, config):
        self.config = config
        self.log_path = Path(config.log_file_path)
        self.error_log_path = self.log_path.with_suffix('.errors.log')
        self.level = getattr(logging, config.log_level.upper(), logging.INFO)

        self._setup_logging()
        self.logger = logging.getLogger(__name__)
        self.logger.info(f"Logging to {self.log_path} at level {logging.getLevelName(self.level)}")

    def _setup_logging(self):
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        root_logger.setLevel(self.level)

        json_formatter = JSONFormatter()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        console_handler.setLevel(self.level)

        root_logger.addHandler(self._rotating_handler(self.log_path, self.level, 10, 5, json_formatter))
        root_logger.addHandler(console_handler)
        root_logger.addHandler(self._rotating_handler(self.error_log_path, logging.ERROR, 5, 3, json_formatter))

        # token and REST calls would otherwise log every connection at DEBUG
        logging.getLogger('urllib3').setLevel(max(self.level, logging.INFO))

        self._remove_expired_logs()

    @staticmethod
    def _rotating_handler(path: Path, level: int, max_megabytes: int, backup_count: int,
                          formatter: logging.Formatter) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            filename=str(path),
            maxBytes=max_megabytes * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        handler.setFormatter(formatter)
        handler.setLevel(level)
        return handler

    def _remove_expired_logs(self):
        """Delete rotated log files older than the retention window."""
        cutoff = (datetime.now() - timedelta(days=LOG_RETENTION_DAYS)).timestamp()
        logger = logging.getLogger(__name__)

        for log_file in self.log_path.parent.glob("*.log.*"):
            try:
                if log_file.stat().st_mtime < cutoff:
                    log_file.unlink()
                    logger.info(f"Removed expired log file: {log_file}")
            except OSError as e:
                logger.warning(f"Could not remove expired log file {log_file}: {e}")

    def get_health_status(self) -> Dict[str, Any]:
        """Report whether the log files can still be written."""
        writable = os.access(self.log_path.parent, os.W_OK) and (
            not self.log_path.exists() or os.access(self.log_path, os.W_OK)
        )

        return {
            'status': 'healthy' if writable else 'unhealthy',
            'log_file_writable': writable,
            'log_file_path': str(self.log_path),
            'error_log_path': str(self.error_log_path),
            'level': logging.getLevelName(self.level),
            'timestamp': datetime.now().isoformat()
        }
