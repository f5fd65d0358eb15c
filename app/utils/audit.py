# app/utils/audit.py
"""Audit trail hook."""
import json
import logging
from typing import Any, Dict, Optional

audit_logger = logging.getLogger("app.audit")


class AuditLogger:
    """Post-commit hook recording who changed what.

    The default sink is the `app.audit` logger; deployments route that logger
    to their audit store.
    """

    async def log(
        self,
        actor_id: Optional[str],
        action: str,
        resource_kind: str,
        resource_id: Any,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        audit_logger.info(
            "%s %s %s by %s %s",
            action,
            resource_kind,
            resource_id if resource_id is not None else "-",
            actor_id or "system",
            json.dumps(details or {}, default=str, sort_keys=True)
        )
