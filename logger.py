"""Logging setup with verbosity levels, colored console output and progress tracking."""

import copy
import logging
import logging.handlers
import time
from typing import Any, Dict, Optional

import colorlog

ROOT_LOGGER_NAME = 'confluence_md'
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
ALLOWED_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}
SENSITIVE_FIELDS = {'password', 'secret', 'api_token', 'access_token', 'auth_header'}


def resolve_log_level(verbosity: int = 0, level: Optional[str] = None) -> int:
    """
    Pick the log level from an explicit name or the -v count.

    Raises:
        ValueError: If level is not a known level name
    """
    if level:
        level_upper = level.upper()
        if level_upper not in ALLOWED_LEVELS:
            raise ValueError(
                f"Invalid log level '{level}'. Must be one of: {sorted(ALLOWED_LEVELS)}"
            )
        return getattr(logging, level_upper)

    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def setup_logging(
    verbosity: int = 0,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Configure the confluence_md logger.

    Args:
        verbosity: Verbosity level (0=WARNING, 1=INFO, 2+=DEBUG)
        log_file: Optional path to a rotating log file
        log_format: Optional custom log format string
        date_format: Optional custom date format string
        level: Optional explicit log level name, overrides verbosity

    Returns:
        Configured logger instance
    """
    log_level = resolve_log_level(verbosity, level)
    log_format = log_format or DEFAULT_LOG_FORMAT
    date_format = date_format or DEFAULT_DATE_FORMAT

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = colorlog.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(colorlog.ColoredFormatter(
        fmt='%(log_color)s' + log_format,
        datefmt=date_format,
        log_colors=LOG_COLORS
    ))
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
        except OSError as e:
            logger.warning(f"Failed to set up file logging: {str(e)}")
        else:
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(fmt=log_format, datefmt=date_format))
            logger.addHandler(file_handler)
            logger.info(f"Logging to file: {log_file}")

    logger.debug(f"Log level: {logging.getLevelName(log_level)}")
    return logger


class ProgressTracker:
    """Context manager counting processed items and logging a summary on exit."""

    def __init__(self, total_items: int, item_type: str = "items"):
        """
        Initialize progress tracker.

        Args:
            total_items: Total number of items to process
            item_type: Description of item type (e.g., "pages", "images")
        """
        self.total_items = total_items
        self.item_type = item_type
        self.processed_items = 0
        self.successful_items = 0
        self.failed_items = 0
        self.start_time: Optional[float] = None
        self.logger = logging.getLogger(f'{ROOT_LOGGER_NAME}.progress')

    def __enter__(self) -> 'ProgressTracker':
        self.start_time = time.time()
        self.logger.info(f"Starting processing of {self.total_items} {self.item_type}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return

        stats = self.get_stats()
        if self.failed_items and self.failed_items == self.processed_items:
            log_method = self.logger.error
        elif self.failed_items:
            log_method = self.logger.warning
        else:
            log_method = self.logger.info

        log_method(
            f"{self.item_type.capitalize()}: {self.successful_items} succeeded, "
            f"{self.failed_items} failed of {self.total_items} "
            f"({stats['success_rate']:.1f}%) in {stats['elapsed_time_formatted']}"
        )

    def increment(self, success: bool = True) -> None:
        """
        Record one processed item.

        Args:
            success: Whether the item was processed successfully
        """
        self.processed_items += 1
        if success:
            self.successful_items += 1
        else:
            self.failed_items += 1

        if self.processed_items % 10 == 0 or not success:
            remaining = self.total_items - self.processed_items
            self.logger.info(
                f"Processed {self.processed_items}/{self.total_items} {self.item_type} "
                f"({remaining} remaining) - Last: {'Success' if success else 'Failed'}"
            )

    def get_stats(self) -> Dict[str, Any]:
        """Get current progress statistics."""
        elapsed = 0.0 if self.start_time is None else time.time() - self.start_time
        return {
            'total': self.total_items,
            'processed': self.processed_items,
            'successful': self.successful_items,
            'failed': self.failed_items,
            'success_rate': (self.successful_items / self.total_items * 100) if self.total_items else 0,
            'elapsed_time': elapsed,
            'elapsed_time_formatted': format_elapsed(elapsed)
        }


def format_elapsed(seconds: float) -> str:
    """Format elapsed time in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"

    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m {secs}s"


def log_config(config: Dict[str, Any]) -> None:
    """
    Log the effective configuration with secrets redacted.

    Args:
        config: Configuration dictionary to log
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    sanitized = sanitize_config(config)

    confluence = sanitized.get('confluence', {})
    conversion = sanitized.get('conversion', {})
    export_settings = sanitized.get('export', {})

    logger.debug("Configuration:")
    logger.debug(f"  Confluence Base URL: {confluence.get('base_url') or 'Not Set'}")
    logger.debug(f"  Email: {confluence.get('email') or 'Not Set'}")
    logger.debug(f"  API Token: {confluence.get('api_token') or 'Not Set'}")
    logger.debug(f"  Timeout: {confluence.get('timeout')}s, Max Retries: {confluence.get('max_retries')}")
    logger.debug(f"  Image Folder: {conversion.get('image_folder')}")
    logger.debug(f"  Download Images: {conversion.get('download_images')}")
    logger.debug(f"  Include Frontmatter: {conversion.get('include_frontmatter')}")
    logger.debug(f"  Output Directory: {export_settings.get('output_directory')}")
    logger.debug(f"  Filename Template: {export_settings.get('filename_template') or 'Default'}")


def sanitize_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Copy a configuration with sensitive string values masked."""
    def mask_sensitive(data: Any) -> Any:
        if isinstance(data, dict):
            masked = {}
            for key, value in data.items():
                if isinstance(value, str) and value and any(s in str(key).lower() for s in SENSITIVE_FIELDS):
                    masked[key] = "***REDACTED***"
                else:
                    masked[key] = mask_sensitive(value)
            return masked
        if isinstance(data, list):
            return [mask_sensitive(item) for item in data]
        return data

    return mask_sensitive(copy.deepcopy(config))


__all__ = [
    'ProgressTracker',
    'format_elapsed',
    'log_config',
    'resolve_log_level',
    'sanitize_config',
    'setup_logging'
]
