from typing import Optional

from sqlalchemy.orm import Session

from app.models.employee import Employee
from app.models.user import User, UserRole


class OrganizationAccessPolicy:
    """
    Read scope over an employee's performance records.

    HR and admins read everyone in their organization; otherwise only the
    employee themself and their direct manager.
    """

    def __init__(self, db: Session):
        self.db = db

    def can_read(self, actor_id: Optional[int], employee_id: int) -> bool:
        if actor_id is None:
            return False
        actor = self.db.get(User, actor_id)
        employee = self.db.get(Employee, employee_id)
        if actor is None or employee is None or not actor.is_active:
            return False

        if actor.role == UserRole.SUPER_ADMIN:
            return True
        if actor.organization_id != employee.organization_id:
            return False
        if actor.is_hr:
            return True
        if employee.user_id == actor.id:
            return True
        return employee.manager is not None and employee.manager.user_id == actor.id
