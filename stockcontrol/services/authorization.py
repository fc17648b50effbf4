from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockcontrol.logging_config import get_logger
from stockcontrol.repositories.catalog_repository import CatalogRepository

logger = get_logger("authorization")


class Privilege(str, Enum):
    PRIVILEGED = "privileged"
    UNPRIVILEGED = "unprivileged"
    UNKNOWN = "unknown"


class AuthorizationProvider(Protocol):
    def privilege_for(self, actor_id: Optional[int]) -> Privilege: ...


def may_go_negative(privilege: Privilege, allow_negative: bool) -> bool:
    # UNKNOWN is treated as UNPRIVILEGED unless the caller asked for the override.
    return allow_negative or privilege is Privilege.PRIVILEGED


class RoleAuthorizationProvider:
    """Obtiene el privilegio a partir del rol del usuario en la tabla users."""

    def __init__(self, db: Session, privileged_roles: Iterable[str] = ("admin",)):
        self._catalog = CatalogRepository(db)
        self._roles = {r.strip().lower() for r in privileged_roles if r.strip()}

    def privilege_for(self, actor_id: Optional[int]) -> Privilege:
        if actor_id is None:
            return Privilege.UNKNOWN
        try:
            user = self._catalog.get_user(actor_id)
        except SQLAlchemyError as e:
            logger.warning("Role lookup failed for actor %s: %s", actor_id, e)
            return Privilege.UNKNOWN
        if user is None or not user.is_active:
            return Privilege.UNKNOWN
        if (user.role or "").lower() in self._roles:
            return Privilege.PRIVILEGED
        return Privilege.UNPRIVILEGED


class StaticAuthorizationProvider:
    """Respuesta fija por usuario, para quien ya resolvió los roles."""

    def __init__(self, privileges: Optional[dict[int, Privilege]] = None, default: Privilege = Privilege.UNKNOWN):
        self._privileges = dict(privileges or {})
        self._default = default

    def privilege_for(self, actor_id: Optional[int]) -> Privilege:
        if actor_id is None:
            return self._default
        return self._privileges.get(actor_id, self._default)
