"""
Request-scoped dependencies.

Authentication is handled upstream; the gateway forwards the acting user's
id in the X-User-ID header. Provider clients are process-wide and come from
app.state, everything else is built per request around the DB session.
"""
import logging
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.exceptions import InsufficientScopeError
from app.database import get_db
from app.models.user import User, UserRole
from app.services.access import OrganizationAccessPolicy
from app.services.ai_orchestrator import AIOrchestrator
from app.services.notification import DatabaseNotificationDispatcher

logger = logging.getLogger(__name__)


def get_current_user(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    db: Session = Depends(get_db),
) -> User:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-ID header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-User-ID header")

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        logger.warning(f"Unknown or inactive user {user_id}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return user


def require_role(*roles: UserRole) -> Callable:
    def checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles and user.role != UserRole.SUPER_ADMIN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return user
    return checker


require_hr = require_role(UserRole.HR_ADMIN, UserRole.HR_MANAGER)
require_manager = require_role(UserRole.HR_ADMIN, UserRole.HR_MANAGER, UserRole.MANAGER)


def get_ai(request: Request) -> AIOrchestrator:
    return request.app.state.ai


def get_access_policy(db: Session = Depends(get_db)) -> OrganizationAccessPolicy:
    return OrganizationAccessPolicy(db)


def get_notifier(db: Session = Depends(get_db)) -> DatabaseNotificationDispatcher:
    return DatabaseNotificationDispatcher(db)


def ensure_can_read(policy: OrganizationAccessPolicy, user: User, employee_id: int):
    if not policy.can_read(user.id, employee_id):
        raise InsufficientScopeError(user.id, employee_id)
