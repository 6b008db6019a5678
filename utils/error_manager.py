import json
import os
import datetime
from typing import Dict, Any, List

from utils.logger import get_logger

logger = get_logger("error_manager")


class ErrorManager:
    """
    Centralized manager for logging and retrieving API errors.
    """

    LOG_FILE = "outputs/api_errors.log"
    MAX_ENTRIES = 100

    @classmethod
    def log_error(
        cls,
        service: str,
        error_message: str,
        details: Any = None,
        severity: str = "error",
        code: str = None,
    ):
        """
        Log an error to the log file.

        Args:
            service: Name of the service/agent (e.g., "DirectorAgent", "ImageAgent")
            error_message: Brief error description
            details: Additional context (segment id, attempt count, ...)
            severity: Error severity ("warning", "error", "critical")
            code: Stable error code when the error is a ViralCutError
        """
        entry = {
            "timestamp": datetime.datetime.now().isoformat(),
            "service": service,
            "message": error_message,
            "code": code,
            "details": str(details) if details else None,
            "severity": severity,
        }

        log_dir = os.path.dirname(cls.LOG_FILE)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        try:
            logs = cls._read_logs()
            logs.append(entry)
            if len(logs) > cls.MAX_ENTRIES:
                logs = logs[-cls.MAX_ENTRIES:]
            with open(cls.LOG_FILE, "w", encoding="utf-8") as f:
                json.dump(logs, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.critical(f"Failed to write to error log: {e}")

        log_fn = getattr(logger, severity.lower(), logger.error)
        log_fn(f"{service}: {error_message}")

    @classmethod
    def _read_logs(cls) -> List[Dict]:
        if not os.path.exists(cls.LOG_FILE):
            return []
        with open(cls.LOG_FILE, "r", encoding="utf-8") as f:
            file_content = f.read()
        if not file_content.strip():
            return []
        try:
            logs = json.loads(file_content)
        except json.JSONDecodeError:
            return []  # Reset if corrupted
        return logs if isinstance(logs, list) else []

    @classmethod
    def get_recent_errors(cls, limit: int = 20) -> List[Dict]:
        """Get recent error logs, newest first."""
        try:
            logs = cls._read_logs()
        except OSError:
            return []
        return sorted(logs, key=lambda x: x["timestamp"], reverse=True)[:limit]

    @classmethod
    def clear_logs(cls):
        """Clear the error log file."""
        if os.path.exists(cls.LOG_FILE):
            os.remove(cls.LOG_FILE)
