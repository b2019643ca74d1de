"""
Единая точка проверки прав для операций с классами.

Все сервисы и CRUD-функции получают Actor и спрашивают здесь, можно ли
выполнить действие, вместо сравнения строк ролей на месте.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.exceptions import AuthorizationError, PermissionDeniedError


class ActorRole(str, Enum):
    admin = "admin"
    teacher = "teacher"
    student = "student"


class Actor(BaseModel):
    """Аутентифицированный пользователь текущего запроса"""

    id: int = Field(..., gt=0)
    role: ActorRole

    model_config = ConfigDict(frozen=True)

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.admin

    @property
    def is_teacher(self) -> bool:
        return self.role == ActorRole.teacher

    @property
    def is_student(self) -> bool:
        return self.role == ActorRole.student


def can_manage(actor: Actor, teaching_class) -> bool:
    """Admin or the teacher assigned to the class."""
    if actor.is_admin:
        return True
    return (
        actor.is_teacher
        and teaching_class.teacher_id is not None
        and teaching_class.teacher_id == actor.id
    )


def can_create_class(actor: Actor, teacher_id: Optional[int]) -> bool:
    """Admins create any class, teachers only classes they teach themselves."""
    if actor.is_admin:
        return True
    return actor.is_teacher and teacher_id == actor.id


def can_manage_main_class(actor: Actor, main_class) -> bool:
    """Admin or the advisor of the main class."""
    if actor.is_admin:
        return True
    return (
        actor.is_teacher
        and main_class.advisor_id is not None
        and main_class.advisor_id == actor.id
    )


def is_enrolled(actor: Actor, teaching_class) -> bool:
    return actor.id in (teaching_class.students or [])


def ensure_can_manage(actor: Actor, teaching_class, action: str) -> None:
    if not can_manage(actor, teaching_class):
        raise PermissionDeniedError(
            action,
            f"teaching class {teaching_class.id}",
            "only an admin or the class teacher can do this",
        )


def ensure_can_manage_main_class(actor: Actor, main_class, action: str) -> None:
    if not can_manage_main_class(actor, main_class):
        raise PermissionDeniedError(
            action,
            f"main class {main_class.id}",
            "only an admin or the class advisor can do this",
        )


def ensure_role(actor: Actor, *roles: ActorRole) -> None:
    if actor.role not in roles:
        raise AuthorizationError(
            f"Role '{actor.role.value}' is not allowed to perform this action",
            {"allowed_roles": [role.value for role in roles]},
        )
