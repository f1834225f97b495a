"""Authorization decisions.

``authorize`` is a pure function of the caller identity, the operation and
the target. It never touches the database itself; file-scoped checks ask
the supplied assignment lookup whether a grant exists.
"""
import enum
from dataclasses import dataclass
from typing import Optional

from .errors import Unauthenticated, InsufficientRole, NotAssigned, SelfDeletionDenied
from .models import Role


class Operation(str, enum.Enum):
    FILE_UPLOAD = 'file:upload'
    FILE_DELETE = 'file:delete'
    FILE_LIST_ALL = 'file:list-all'
    FILE_LIST_OWN = 'file:list-own'
    FILE_GET_OWN = 'file:get-own'
    FILE_DOWNLOAD_OWN = 'file:download-own'
    ASSIGN = 'assignment:create'
    UNASSIGN = 'assignment:delete'
    ASSIGNMENT_LIST = 'assignment:list'
    USER_CREATE = 'user:create'
    USER_LIST = 'user:list'
    USER_GET = 'user:get'
    USER_UPDATE = 'user:update'
    USER_DELETE = 'user:delete'
    PASSWORD_RESET = 'user:reset-password'
    SESSION = 'session'


ADMIN_ONLY = frozenset({Role.ADMIN})
ANY_ROLE = frozenset({Role.ADMIN, Role.USER})

ROLE_TABLE = {
    Operation.FILE_UPLOAD: ADMIN_ONLY,
    Operation.FILE_DELETE: ADMIN_ONLY,
    Operation.FILE_LIST_ALL: ADMIN_ONLY,
    Operation.ASSIGN: ADMIN_ONLY,
    Operation.UNASSIGN: ADMIN_ONLY,
    Operation.ASSIGNMENT_LIST: ADMIN_ONLY,
    Operation.USER_CREATE: ADMIN_ONLY,
    Operation.USER_LIST: ADMIN_ONLY,
    Operation.USER_GET: ADMIN_ONLY,
    Operation.USER_UPDATE: ADMIN_ONLY,
    Operation.USER_DELETE: ADMIN_ONLY,
    Operation.PASSWORD_RESET: ADMIN_ONLY,
    Operation.FILE_LIST_OWN: ANY_ROLE,
    Operation.FILE_GET_OWN: ANY_ROLE,
    Operation.FILE_DOWNLOAD_OWN: ANY_ROLE,
    Operation.SESSION: ANY_ROLE,
}

# reads where a non-admin additionally needs a grant on the file
ASSIGNMENT_SCOPED = frozenset({Operation.FILE_GET_OWN, Operation.FILE_DOWNLOAD_OWN})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def raise_for_denial(self):
        if self.allowed:
            return
        raise DENIAL_ERRORS[self.reason]()


ALLOW = Decision(True)

DENIAL_ERRORS = {
    'Unauthenticated': Unauthenticated,
    'InsufficientRole': InsufficientRole,
    'NotAssigned': NotAssigned,
    'SelfDeletion': SelfDeletionDenied,
}


def deny(reason):
    return Decision(False, reason)


def authorize(identity, operation, file_id=None, target_user_id=None, assignments=None):
    """Decide whether ``identity`` may perform ``operation``.

    ``assignments`` must expose ``exists(user_id, file_id)``; it is only
    consulted for assignment-scoped reads by non-admins.
    """
    if identity is None:
        return deny('Unauthenticated')

    if operation == Operation.USER_DELETE and target_user_id is not None \
            and target_user_id == identity.id:
        return deny('SelfDeletion')

    if identity.role not in ROLE_TABLE[operation]:
        return deny('InsufficientRole')

    if operation in ASSIGNMENT_SCOPED and identity.role != Role.ADMIN:
        if file_id is None or assignments is None:
            return deny('NotAssigned')
        if not assignments.exists(identity.id, file_id):
            return deny('NotAssigned')

    return ALLOW
