# app/services/consistency_coordinator.py
"""Atomic units of work spanning enrollment, class occupancy and student pointer.

Every write to an enrollment row, a class occupancy counter or a student's
class pointer happens inside `atomic()`. Cache invalidation and audit entries
queued during a unit are sent only once the unit has committed.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession

from ..utils.audit import AuditLogger
from ..utils.cache_invalidation import CacheInvalidator

logger = logging.getLogger(__name__)


class ConsistencyCoordinator:
    def __init__(
        self,
        db: AsyncSession,
        cache_invalidator: Optional[CacheInvalidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        actor_id: Optional[str] = None
    ):
        self.db = db
        self.cache_invalidator = cache_invalidator or CacheInvalidator()
        self.audit_logger = audit_logger or AuditLogger()
        self.actor_id = actor_id
        self._invalidations: List[Tuple[str, Any]] = []
        self._audit_entries: List[Tuple[str, str, Any, Dict[str, Any]]] = []
        self._in_unit = False

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator["ConsistencyCoordinator"]:
        """Commit everything written inside the block, or nothing."""
        if self._in_unit:
            raise RuntimeError("Units of work cannot be nested")
        self._in_unit = True
        try:
            yield self
            await self.db.commit()
        except BaseException:
            self._invalidations.clear()
            self._audit_entries.clear()
            await self._rollback()
            raise
        finally:
            self._in_unit = False

        await self._dispatch()

    def invalidate(self, entity_kind: str, entity_id: Any) -> None:
        """Queue a cache invalidation for after commit"""
        self._invalidations.append((entity_kind, entity_id))

    def audit(self, action: str, resource_kind: str, resource_id: Any, details: Optional[Dict[str, Any]] = None) -> None:
        """Queue an audit entry for after commit"""
        self._audit_entries.append((action, resource_kind, resource_id, details or {}))

    async def record_batch(self, action: str, resource_kind: str, details: Dict[str, Any]) -> None:
        """Audit a batch summary; batches commit per item so there is no enclosing unit"""
        await self._send_audit(action, resource_kind, None, details)

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            # The original failure is re-raised by the caller of _rollback
            logger.error(f"Rollback failed: {e}")

    async def _dispatch(self) -> None:
        invalidations, self._invalidations = list(dict.fromkeys(self._invalidations)), []
        audit_entries, self._audit_entries = self._audit_entries, []

        for entity_kind, entity_id in invalidations:
            try:
                await self.cache_invalidator.invalidate(entity_kind, entity_id)
            except Exception as e:
                logger.warning(f"Cache invalidation failed for {entity_kind}:{entity_id}: {e}")

        for action, resource_kind, resource_id, details in audit_entries:
            await self._send_audit(action, resource_kind, resource_id, details)

    async def _send_audit(self, action: str, resource_kind: str, resource_id: Any, details: Dict[str, Any]) -> None:
        try:
            await self.audit_logger.log(self.actor_id, action, resource_kind, resource_id, details)
        except Exception as e:
            logger.warning(f"Audit logging failed for {action} {resource_kind}:{resource_id}: {e}")
