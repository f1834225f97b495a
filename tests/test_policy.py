import pytest

from filegate.errors import InsufficientRole, NotAssigned, SelfDeletionDenied, Unauthenticated
from filegate.models import Role
from filegate.policy import Operation, ROLE_TABLE, authorize
from filegate.tokens import Identity

ADMIN = Identity('admin-1', 'admin@example.com', Role.ADMIN)
USER = Identity('user-1', 'user@example.com', Role.USER)


class Grants:
    def __init__(self, *pairs):
        self.pairs = set(pairs)
        self.calls = 0

    def exists(self, user_id, file_id):
        self.calls += 1
        return (user_id, file_id) in self.pairs


def test_every_operation_has_a_role_set():
    assert set(ROLE_TABLE) == set(Operation)


def test_no_identity_is_unauthenticated():
    decision = authorize(None, Operation.FILE_LIST_OWN)
    assert decision.reason == 'Unauthenticated'
    with pytest.raises(Unauthenticated):
        decision.raise_for_denial()


@pytest.mark.parametrize('operation', [
    Operation.FILE_UPLOAD, Operation.FILE_DELETE, Operation.FILE_LIST_ALL, Operation.ASSIGN,
    Operation.UNASSIGN, Operation.ASSIGNMENT_LIST, Operation.USER_CREATE, Operation.USER_LIST,
    Operation.USER_GET, Operation.USER_UPDATE, Operation.USER_DELETE, Operation.PASSWORD_RESET,
])
def test_admin_only_operations(operation):
    assert authorize(ADMIN, operation).allowed
    decision = authorize(USER, operation)
    assert decision.reason == 'InsufficientRole'
    with pytest.raises(InsufficientRole):
        decision.raise_for_denial()


def test_user_needs_assignment_for_file_reads():
    grants = Grants(('user-1', 'file-a'))
    for op in (Operation.FILE_GET_OWN, Operation.FILE_DOWNLOAD_OWN):
        assert authorize(USER, op, file_id='file-a', assignments=grants).allowed
        decision = authorize(USER, op, file_id='file-b', assignments=grants)
        assert decision.reason == 'NotAssigned'
        with pytest.raises(NotAssigned):
            decision.raise_for_denial()


def test_admin_skips_assignment_lookup():
    grants = Grants()
    assert authorize(ADMIN, Operation.FILE_DOWNLOAD_OWN, file_id='file-a', assignments=grants).allowed
    assert grants.calls == 0


def test_listing_own_files_is_role_gated_only():
    grants = Grants()
    assert authorize(USER, Operation.FILE_LIST_OWN, assignments=grants).allowed
    assert grants.calls == 0


def test_self_deletion_denied_for_every_role():
    for identity in (ADMIN, USER):
        decision = authorize(identity, Operation.USER_DELETE, target_user_id=identity.id)
        assert decision.reason == 'SelfDeletion'
        with pytest.raises(SelfDeletionDenied):
            decision.raise_for_denial()
    assert authorize(ADMIN, Operation.USER_DELETE, target_user_id='someone-else').allowed
