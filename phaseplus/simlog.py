"""
Session Logging Infrastructure

Provides structured logging with optional SQLite capture and rich console output.
Acts as a pure observer: nothing in the state machine depends on what is logged.
"""

import sqlite3
import json
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

from pydantic import BaseModel
from loguru import logger
from rich.console import Console
from rich.logging import RichHandler


class EventType(str, Enum):
    """Event types for structured logging"""

    # Machine Lifecycle
    SETUP_COMPLETE = "setup_complete"
    TRANSITION_REGISTERED = "transition_registered"
    MACHINE_BEGIN = "machine_begin"
    FAST_FORWARD = "fast_forward"

    # Transitions
    PHASE_REQUESTED = "phase_requested"
    TRANSITION_ACCEPTED = "transition_accepted"
    TRANSITION_REJECTED = "transition_rejected"
    NOTIFICATION_IGNORED = "notification_ignored"

    # Handlers
    HANDLER_INVOKED = "handler_invoked"
    HANDLER_MISSING = "handler_missing"

    # Session Transport
    DELTA_SUBMITTED = "delta_submitted"
    NOTIFICATION_DELIVERED = "notification_delivered"
    PARTICIPANT_JOINED = "participant_joined"

    # Scenario Runner
    SCENARIO_START = "scenario_start"
    SCENARIO_COMPLETE = "scenario_complete"


class LogLevel(str, Enum):
    """Log levels for structured logging"""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogEntry(BaseModel):
    """Structured log entry with full type safety"""

    participant_id: Optional[str] = None
    phase: Optional[str] = None
    event_type: EventType
    payload: Optional[Dict[str, Any]] = None
    message: str
    level: LogLevel = LogLevel.INFO


class SQLiteSink:
    """Custom loguru sink for SQLite event storage."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.connection = sqlite3.connect(str(db_path))
        self._init_tables()

    def _init_tables(self):
        """Initialize the events table with the required schema."""
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY,
                participant_id TEXT,
                phase TEXT,
                event_type TEXT,
                message TEXT,
                payload TEXT,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """
        )
        self.connection.commit()

    def write(self, message):
        """Write a log record to SQLite."""
        record = message.record
        event_dict = record.get("extra", {}).get("event_dict", {})

        self.connection.execute(
            """
            INSERT INTO events (participant_id, phase, event_type, message, payload)
            VALUES (?, ?, ?, ?, ?)
        """,
            (
                event_dict.get("participant_id"),
                event_dict.get("phase"),
                event_dict.get("event_type"),
                record["message"],
                (
                    json.dumps(event_dict.get("payload"))
                    if event_dict.get("payload")
                    else None
                ),
            ),
        )
        self.connection.commit()

    def close(self):
        """Close the SQLite connection."""
        if self.connection:
            self.connection.close()


class SessionLogger:
    """Main logging coordinator for a shared-state session."""

    def __init__(self, session_id: str, verbosity: int, db_path: Optional[Path] = None):
        self.session_id = session_id
        self.verbosity = verbosity
        self.db_path = db_path
        self.sqlite_sink: Optional[SQLiteSink] = None
        self._sqlite_handler_id: Optional[int] = None
        self.console = Console()

        self._setup_logging()

    def _add_forensic_symbol(self, record):
        """Add forensic symbol to record extra data."""
        is_forensic = "event_dict" in record["extra"]
        record["extra"]["symbol"] = "🔬" if is_forensic else "💬"
        return True

    def _setup_logging(self):
        """Configure loguru with rich console and optional SQLite sinks."""
        logger.remove()

        log_level = self._get_log_level()
        logger.add(
            RichHandler(console=self.console, rich_tracebacks=True),
            level=log_level,
            format="{time:HH:mm:ss} | {level: <8} | {extra[symbol]} {message}",
            filter=self._add_forensic_symbol,
        )

        if self.db_path is not None:
            self.sqlite_sink = SQLiteSink(Path(self.db_path))
            self._sqlite_handler_id = logger.add(
                self.sqlite_sink.write,
                level="DEBUG",
                format="{message}",
                filter=lambda record: "event_dict" in record["extra"],
            )

        logger.info(f"Session logging initialized: {self.session_id}")
        if self.db_path is not None:
            logger.info(f"Database: {self.db_path}")
        logger.info(f"Console verbosity: {log_level}")

    def _get_log_level(self) -> str:
        """Map verbosity level to loguru level."""
        level_map = {
            -1: "ERROR",  # Quiet mode
            0: "WARNING",
            1: "INFO",
            2: "DEBUG",
            3: "TRACE",
        }
        return level_map.get(self.verbosity, "INFO")

    def close(self):
        """Clean shutdown of logging infrastructure."""
        if self._sqlite_handler_id is not None:
            logger.remove(self._sqlite_handler_id)
            self._sqlite_handler_id = None
        if self.sqlite_sink:
            self.sqlite_sink.close()
        logger.info(f"Session logging closed: {self.session_id}")


def setup_logging(
    session_id: str, verbosity: int, db_path: Optional[Path] = None
) -> SessionLogger:
    """
    Initialize structured logging for a session.

    Args:
        session_id: Unique session identifier
        verbosity: Console verbosity level (-1 to 3)
        db_path: Optional SQLite file for forensic event capture

    Returns:
        SessionLogger instance for cleanup
    """
    global _current_session_logger
    _current_session_logger = SessionLogger(session_id, verbosity, db_path)
    return _current_session_logger


def generate_session_id() -> str:
    """Generate a session ID in yymmddHHMMSS format."""
    return datetime.now().strftime("%y%m%d%H%M%S")


_current_session_logger: Optional[SessionLogger] = None


def log_event(entry: LogEntry, forensic: bool = True):
    """
    Log a structured event.

    Args:
        entry: LogEntry with structured event data
        forensic: If True, binds the event dict so the SQLite sink captures it
    """
    if forensic:
        logger.opt(depth=1).bind(
            event_dict={
                "participant_id": entry.participant_id,
                "phase": entry.phase,
                "event_type": entry.event_type.value,
                "payload": entry.payload,
            }
        ).log(entry.level.value, entry.message)
    else:
        if entry.level == LogLevel.DEBUG:
            logger.opt(depth=1).debug(entry.message)
        elif entry.level == LogLevel.WARNING:
            logger.opt(depth=1).warning(entry.message)
        elif entry.level == LogLevel.ERROR:
            logger.opt(depth=1).error(entry.message)
        else:
            logger.opt(depth=1).info(entry.message)
