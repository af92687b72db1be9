import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

from sales_rollup.config import config

class ReportLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the store, week and report they concern."""

    def process(self, msg, kwargs):
        extra = self.extra
        return f"[store {extra['store_id']} week {extra['week_id']} report {extra['report_id']}] {msg}", kwargs


class Logger:
    """Logging manager for the Sales Rollup engine.

    Each named logger writes to its own rotating file under LOGGING.directory
    and, when LOGGING.console_output is set, to stderr.
    """

    _instance = None
    _loggers = {}

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Logger, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the logger if not already initialized."""
        if self._initialized:
            return

        self._settings = config.log_config
        self._level = getattr(logging, self._settings['level'].upper(), logging.INFO)
        self._formatter = logging.Formatter(self._settings['format'])
        self._log_dir = Path(self._settings['directory'])
        self._log_dir.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(self._level)
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        if self._settings['console_output']:
            root_logger.addHandler(self._console_handler())

        self._app_logger = self.get_logger('app')
        self._initialized = True

    def _console_handler(self):
        handler = logging.StreamHandler()
        handler.setFormatter(self._formatter)
        return handler

    def _file_handler(self, name):
        handler = logging.handlers.RotatingFileHandler(
            self._log_dir / f"{name}.log",
            maxBytes=self._settings['max_size_mb'] * 1024 * 1024,
            backupCount=self._settings['backup_count']
        )
        handler.setFormatter(self._formatter)
        return handler

    def get_logger(self, name):
        """Get a logger with the specified name.

        Args:
            name: Logger name, also the log file name

        Returns:
            Configured logger instance
        """
        if name in self._loggers:
            return self._loggers[name]

        named_logger = logging.getLogger(name)
        named_logger.setLevel(self._level)

        # Remove existing handlers to prevent duplicates
        for handler in named_logger.handlers[:]:
            named_logger.removeHandler(handler)

        named_logger.addHandler(self._file_handler(name))
        if self._settings['console_output']:
            named_logger.addHandler(self._console_handler())
        named_logger.propagate = False

        self._loggers[name] = named_logger
        return named_logger

    def report_logger(self, name, report):
        """Logger whose messages name the report's store, week and id."""
        return ReportLogAdapter(self.get_logger(name), {
            'store_id': report.store_id,
            'week_id': report.week_id,
            'report_id': report.report_id
        })

    def log_exception(self, logger_name, exception, message=None):
        """Log an exception with its stack trace."""
        text = f"{message}: {exception}" if message else str(exception)
        self.get_logger(logger_name).error(text, exc_info=exception)

    @property
    def app_logger(self):
        return self._app_logger

    def rollup_run_started(self, job_name, week_id=None, workers=None):
        """Log the start of a rollup run.

        Returns:
            Run record to pass to rollup_run_finished
        """
        run_logger = self.get_logger('batch')
        run = {'job_name': job_name, 'week_id': week_id, 'started_at': datetime.now()}

        scope = f"week {week_id}" if week_id else "all pending weeks"
        run_logger.info(f"Starting {job_name} for {scope} with {workers} workers")
        return run

    def rollup_run_finished(self, run, success, counts=None):
        """Log the outcome and duration of a rollup run.

        Args:
            run: Record returned by rollup_run_started
            success: Whether the run completed
            counts: Optional processed / applied / failed counts
        """
        run_logger = self.get_logger('batch')
        duration = datetime.now() - run['started_at']

        if success:
            run_logger.info(f"Completed {run['job_name']} in {duration}")
        else:
            run_logger.error(f"Failed {run['job_name']} after {duration}")

        if counts:
            run_logger.info(", ".join(f"{key}={value}" for key, value in counts.items()))

# Global logger instance
logger = Logger()

def get_logger(name):
    """Get a logger with the specified name."""
    return logger.get_logger(name)

def log_exception(logger_name, exception, message=None):
    """Log an exception with stack trace."""
    logger.log_exception(logger_name, exception, message)
