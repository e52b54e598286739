"""
Structured logging infrastructure with JSON formatting and correlation IDs.
"""
import logging
import logging.handlers
import sys
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from pythonjsonlogger import jsonlogger

from asset_admin.core.config import settings

# Context variable for correlation ID
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


class CorrelationIdProcessor:
    """Add correlation ID to structlog event dictionaries."""

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        corr_id = correlation_id.get()
        if corr_id:
            event_dict['correlation_id'] = corr_id
        return event_dict


class CorrelationIdFilter(logging.Filter):
    """Filter to add correlation ID to plain stdlib log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'correlation_id'):
            record.correlation_id = correlation_id.get() or "no-correlation-id"
        return True


class ServiceJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with the service name."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault('level', record.levelname)
        log_record['service'] = settings.APP_NAME


def _build_formatter() -> logging.Formatter:
    if settings.LOG_FORMAT.lower() == 'json':
        return ServiceJsonFormatter(
            '%(asctime)s %(name)s %(levelname)s %(message)s %(correlation_id)s',
            datefmt='%Y-%m-%dT%H:%M:%S'
        )
    return logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(correlation_id)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def setup_logging() -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            CorrelationIdProcessor(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.render_to_log_kwargs,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = _build_formatter()
    correlation_filter = CorrelationIdFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(correlation_filter)
    handlers = [console_handler]

    # File handlers only when a log directory is configured
    if settings.LOG_DIR:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / 'app.log',
            maxBytes=50 * 1024 * 1024,  # 50MB
            backupCount=5
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(correlation_filter)

        error_handler = logging.handlers.RotatingFileHandler(
            log_dir / 'error.log',
            maxBytes=25 * 1024 * 1024,  # 25MB
            backupCount=3
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        error_handler.addFilter(correlation_filter)

        handlers.extend([file_handler, error_handler])

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper()),
        handlers=handlers,
        format='%(message)s',
        force=True
    )

    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.INFO)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        BoundLogger: Configured structlog logger
    """
    return structlog.get_logger(name)


def set_correlation_id(corr_id: Optional[str] = None) -> str:
    """
    Set correlation ID for request tracing.

    Args:
        corr_id: Correlation ID to set. If None, generates a new UUID.

    Returns:
        str: The correlation ID that was set
    """
    if corr_id is None:
        corr_id = str(uuid.uuid4())

    correlation_id.set(corr_id)
    return corr_id


class FileOperationLogHandler:
    """Handler for file operation logging with audit trails."""

    def __init__(self):
        self.logger = get_logger(__name__)

    async def log_file_upload(self, file_name: str, file_size: int, mime_type: str, user_id: Optional[str], file_path: str, **kwargs) -> None:
        """Log file upload."""
        await self.logger.ainfo(
            "File upload completed",
            operation="upload",
            file_name=file_name,
            file_size=file_size,
            mime_type=mime_type,
            user_id=user_id,
            file_path=file_path,
            **kwargs
        )

    async def log_file_deletion(self, file_name: str, user_id: Optional[str], file_path: str, file_size: int = None, **kwargs) -> None:
        """Log file deletion with audit trail."""
        await self.logger.ainfo(
            "File deletion completed",
            operation="delete",
            file_name=file_name,
            user_id=user_id,
            file_path=file_path,
            file_size=file_size,
            **kwargs
        )

    async def log_file_move(self, file_name: str, user_id: Optional[str], old_path: str, new_path: str, **kwargs) -> None:
        """Log file move operations."""
        await self.logger.ainfo(
            "File move completed",
            operation="move",
            file_name=file_name,
            user_id=user_id,
            old_path=old_path,
            new_path=new_path,
            **kwargs
        )

    async def log_bulk_operation(self, report, user_id: Optional[str] = None, **kwargs) -> None:
        """Log the outcome of a bulk operation, one line per invocation."""
        log_func = self.logger.awarning if report.failed or report.aborted else self.logger.ainfo
        await log_func(
            "Bulk file operation completed",
            operation=report.operation,
            user_id=user_id,
            dry_run=report.dry_run,
            total=report.total,
            processed=report.processed,
            skipped=report.skipped,
            failed=report.failed,
            aborted=report.aborted,
            elapsed_ms=report.elapsed_ms,
            totals=dict(report.totals),
            **kwargs
        )

    async def log_integrity_issue(self, file_id: str, category: str, severity: str, details: str, **kwargs) -> None:
        """Log a storage integrity issue."""
        await self.logger.awarning(
            "Storage integrity issue detected",
            operation="validate",
            file_id=file_id,
            category=category,
            severity=severity,
            details=details,
            **kwargs
        )
