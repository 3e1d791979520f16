from typing import Any, Optional

from app.core.logging import request_id_var
from app.services.base import BaseService
from app.models.audit_log import AuditLog

class AuditService(BaseService):
    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        user_id: Optional[int],
        user_role: Optional[str],
        details: dict,
        ai_recommended: bool = False,
        organization_id: Optional[int] = None,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None
    ):
        """
        Create an audit log entry. Strictly append-only.
        The row is flushed, not committed, so it lands in the same transaction
        as the action it describes.
        """
        try:
            def sanitize(obj: Any):
                if hasattr(obj, "model_dump"):
                    return obj.model_dump(mode="json")
                if isinstance(obj, dict):
                    return {k: sanitize(v) for k, v in obj.items()}
                if isinstance(obj, (list, tuple)):
                    return [sanitize(i) for i in obj]
                if hasattr(obj, "isoformat"):
                    return obj.isoformat()
                return obj

            db_log = AuditLog(
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
                user_role=user_role,
                request_id=request_id_var.get() or None,
                details=sanitize(details),
                ai_recommended=ai_recommended,
                organization_id=organization_id or self.org_id,
                before_state=sanitize(before_state),
                after_state=sanitize(after_state)
            )
            self.db.add(db_log)
            self.db.flush()
            return db_log
        except Exception as e:
            # Never break the main flow because of an audit failure
            self.log_error(f"FAILED TO AUDIT LOG: {e}", exc_info=True)
            return None
