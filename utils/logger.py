"""
Database-backed audit logging
"""
from sqlalchemy.orm import Session
from models.log import SystemLog, ErrorLog, UserActivityLog, LogLevel, LogCategory
import database
import json
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

class DatabaseLogger:
    """Centralized database logger; a failed write is reported and never raised"""

    @staticmethod
    def _session(db: Optional[Session]):
        if db is not None:
            return db, False
        if database.SessionLocal is None:
            return None, False
        return database.SessionLocal(), True

    @staticmethod
    def _write(row, db: Optional[Session], kind: str):
        db, should_close = DatabaseLogger._session(db)
        if db is None:
            logger.debug(f"No database configured, skipping {kind} log")
            return
        try:
            db.add(row)
            db.commit()
        except Exception as e:
            logger.warning(f"Failed to write {kind} log: {e}")
            db.rollback()
        finally:
            if should_close:
                db.close()

    @staticmethod
    def log_system(
        level: LogLevel,
        category: LogCategory,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[int] = None,
        db: Optional[Session] = None
    ):
        """Log system events"""
        row = SystemLog(
            level=level,
            category=category,
            message=message,
            details=json.dumps(details, default=str) if details else None,
            user_id=user_id,
        )
        DatabaseLogger._write(row, db, "system")

    @staticmethod
    def log_error(
        error_type: str,
        error_message: str,
        stack_trace: Optional[str] = None,
        source: Optional[str] = None,
        user_id: Optional[int] = None,
        severity: LogLevel = LogLevel.ERROR,
        db: Optional[Session] = None
    ):
        """Log errors and exceptions"""
        row = ErrorLog(
            error_type=error_type,
            error_message=error_message,
            stack_trace=stack_trace,
            source=source,
            user_id=user_id,
            severity=severity,
        )
        DatabaseLogger._write(row, db, "error")

    @staticmethod
    def log_user_activity(
        user_id: Optional[int],
        action: str,
        description: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        db: Optional[Session] = None
    ):
        """Log user activities"""
        row = UserActivityLog(
            user_id=user_id,
            action=action,
            description=description,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        DatabaseLogger._write(row, db, "user activity")

def log_info(message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs):
    """Log INFO level message"""
    DatabaseLogger.log_system(LogLevel.INFO, category, message, **kwargs)

def log_warning(message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs):
    """Log WARNING level message"""
    DatabaseLogger.log_system(LogLevel.WARNING, category, message, **kwargs)
