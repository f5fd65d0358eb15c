# app/services/batch_report.py
"""Outcome bookkeeping for batch operations committed one student at a time."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.exceptions import EduAssistException

logger = logging.getLogger(__name__)

COMPLETED = "completed"
PARTIAL = "partial"
ABORTED = "aborted"


@dataclass
class BatchReport:
    operation: str
    items: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    aborted_at: Optional[str] = None
    error: Optional[str] = None

    @property
    def status(self) -> str:
        if self.aborted_at is not None:
            return ABORTED
        return PARTIAL if self.failures else COMPLETED

    def succeed(self, item: Dict[str, Any]) -> None:
        self.items.append(item)

    def fail(self, student_id: Any, student_name: Optional[str], exc: Exception) -> None:
        """Record an item that was skipped; the batch goes on"""
        if isinstance(exc, EduAssistException):
            kind, message = exc.error, exc.message
        else:
            kind, message = type(exc).__name__, str(exc)
        logger.warning(f"{self.operation}: student {student_id} skipped ({kind}): {message}")
        self.failures.append({
            "student_id": str(student_id),
            "student_name": student_name,
            "error": kind,
            "message": message,
        })

    def abort(self, student_id: Any, exc: Exception) -> None:
        """Stop the batch; items already recorded stay committed"""
        logger.error(f"{self.operation} aborted at student {student_id} after {len(self.items)} items: {exc}")
        self.aborted_at = str(student_id)
        self.error = str(exc)

    def summary(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "committed": len(self.items),
            "failed": len(self.failures),
            "aborted_at": self.aborted_at,
        }
