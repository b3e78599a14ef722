"""
Structured logging for license validation, security detections and audit trails.
Provides JSON log formatting, process-wide logging setup and the security audit logger.
"""

import logging
import json
import threading
from typing import Dict, Any, Optional, List
from datetime import datetime, timezone
from dataclasses import dataclass, asdict, field
from enum import Enum
from pathlib import Path
from logging.handlers import RotatingFileHandler
import uuid


class EventType(Enum):
    """Event type classification for structured logging."""
    LICENSE_VALIDATION = "license_validation"
    LICENSE_EXPIRED = "license_expired"
    LIMIT_WARNING = "limit_warning"
    LIMIT_EXCEEDED = "limit_exceeded"
    SECURITY_VIOLATION = "security_violation"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass
class LogEvent:
    """Structured audit event with tenant and request metadata."""
    event_type: EventType
    message: str
    tenant_id: Optional[str] = None
    module_key: Optional[str] = None
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    severity: Optional[str] = None
    success: Optional[bool] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert log event to dictionary for JSON serialization."""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['event_type'] = self.event_type.value
        return data

class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""

        # Extract structured data from record
        event_data = getattr(record, 'event_data', {})

        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            **event_data
        }

        # Add exception info if present
        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'stack_trace': self.formatException(record.exc_info)
            }

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure the root logger once for the whole process.

    ``json_output`` switches the console handler to ``StructuredFormatter``;
    otherwise the plain format used during development is kept.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))

    # Replace handlers so repeated app creation does not duplicate output
    root.handlers.clear()
    root.addHandler(handler)


class SecurityAuditLogger:
    """
    Audit trail for license decisions and detected attack patterns.

    Writes one JSON document per event to the dedicated ``hrsm.security.audit``
    logger (plus an optional rotating file) and keeps a bounded buffer of
    recent events for the platform endpoints.
    """

    LOGGER_NAME = 'hrsm.security.audit'

    def __init__(self, log_file: Optional[str] = None, buffer_size: int = 1000):
        self.log_file = log_file
        self.audit_logger = self._setup_audit_logger()

        self._event_buffer: List[LogEvent] = []
        self._buffer_lock = threading.Lock()
        self._buffer_max_size = buffer_size

    def _setup_audit_logger(self) -> logging.Logger:
        """Setup dedicated audit logger."""
        audit_logger = logging.getLogger(self.LOGGER_NAME)
        audit_logger.setLevel(logging.INFO)

        if self.log_file and not any(
            isinstance(h, RotatingFileHandler) and getattr(h, 'baseFilename', None) == str(Path(self.log_file).resolve())
            for h in audit_logger.handlers
        ):
            log_dir = Path(self.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                self.log_file,
                maxBytes=50 * 1024 * 1024,  # 50MB
                backupCount=10,
                encoding='utf-8'
            )
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(StructuredFormatter())
            audit_logger.addHandler(file_handler)

        return audit_logger

    def _emit(self, event: LogEvent, level: int = logging.INFO):
        with self._buffer_lock:
            self._event_buffer.append(event)
            if len(self._event_buffer) > self._buffer_max_size:
                self._event_buffer = self._event_buffer[-self._buffer_max_size:]

        self.audit_logger.log(level, event.message, extra={'event_data': event.to_dict()})

    def log_license_validation(self, tenant_id: str, module_key: str, success: bool,
                               reason: str, request_info: Optional[Dict[str, Any]] = None):
        """Log a module license validation decision."""
        request_info = request_info or {}
        self._emit(LogEvent(
            event_type=EventType.LICENSE_VALIDATION,
            message=f"License validation {'succeeded' if success else 'failed'}: {reason}",
            tenant_id=tenant_id,
            module_key=module_key,
            source_ip=request_info.get('ipAddress'),
            user_agent=request_info.get('userAgent'),
            success=success,
            metadata={k: v for k, v in request_info.items() if k not in ('ipAddress', 'userAgent')},
        ), logging.INFO if success else logging.WARNING)

    def log_license_expired(self, tenant_id: str, module_key: str, **metadata):
        self._emit(LogEvent(
            event_type=EventType.LICENSE_EXPIRED,
            message=f"License expired for module {module_key}",
            tenant_id=tenant_id,
            module_key=module_key,
            success=False,
            metadata=metadata,
        ), logging.WARNING)

    def log_limit_warning(self, tenant_id: str, module_key: str, limit_type: str,
                          current_usage: int, limit: int, percentage: int):
        self._emit(LogEvent(
            event_type=EventType.LIMIT_WARNING,
            message=f"Usage of {limit_type} for {module_key} at {percentage}% of limit",
            tenant_id=tenant_id,
            module_key=module_key,
            metadata={'limitType': limit_type, 'currentUsage': current_usage,
                      'limit': limit, 'percentage': percentage},
        ), logging.WARNING)

    def log_limit_exceeded(self, tenant_id: str, module_key: str, limit_type: str,
                           projected_usage: int, limit: int, **metadata):
        self._emit(LogEvent(
            event_type=EventType.LIMIT_EXCEEDED,
            message=f"Usage limit {limit_type} exceeded for {module_key}",
            tenant_id=tenant_id,
            module_key=module_key,
            success=False,
            metadata={'limitType': limit_type, 'projectedUsage': projected_usage,
                      'limit': limit, **metadata},
        ), logging.WARNING)

    def log_violation(self, violation_type: str, severity: str, key: str,
                      description: str, evidence: Dict[str, Any]):
        """Log an attack pattern violation."""
        level = logging.ERROR if severity in ('high', 'critical') else logging.WARNING
        self._emit(LogEvent(
            event_type=EventType.SECURITY_VIOLATION,
            message=description,
            severity=severity,
            metadata={'violationType': violation_type, 'key': key, 'evidence': evidence},
        ), level)

    def log_admin_action(self, action: str, **metadata):
        self._emit(LogEvent(
            event_type=EventType.ADMIN,
            message=f"Administrative action: {action}",
            metadata=metadata,
        ))

    def get_recent_events(self, limit: int = 100,
                          event_type: Optional[EventType] = None) -> List[Dict[str, Any]]:
        """Get recent audit events as JSON-serializable data."""
        with self._buffer_lock:
            events = list(self._event_buffer)
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        return [event.to_dict() for event in events[-limit:]]
