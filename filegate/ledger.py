from dataclasses import dataclass, field
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .errors import Conflict, NotFound
from .models import Assignment, File, User


@dataclass
class BulkResult:
    created: int
    skipped: int
    assignments: List[Assignment] = field(default_factory=list)


class AssignmentLedger:
    """User/file grants.

    Uniqueness of (user, file) is enforced by the ``uq_assignment_user_file``
    constraint; inserts rely on it rather than on a prior lookup.
    """

    def __init__(self, sess):
        self.sess = sess

    def exists(self, user_id, file_id) -> bool:
        stmt = select(Assignment.id).where(Assignment.user_id == user_id,
                                           Assignment.file_id == file_id)
        return self.sess.execute(stmt).first() is not None

    def _require_file(self, file_id):
        file_rec = self.sess.get(File, file_id)
        if file_rec is None:
            raise NotFound('File not found')
        return file_rec

    def _insert(self, user_id, file_id):
        """Commit one grant; returns None when the constraint rejects it."""
        assignment = Assignment(user_id=user_id, file_id=file_id)
        self.sess.add(assignment)
        try:
            self.sess.commit()
        except IntegrityError:
            self.sess.rollback()
            return None
        return assignment

    def create(self, user_id, file_id) -> Assignment:
        self._require_file(file_id)
        if self.sess.get(User, user_id) is None:
            raise NotFound('User not found')
        assignment = self._insert(user_id, file_id)
        if assignment is None:
            if not self.exists(user_id, file_id):
                # an endpoint vanished between the lookup and the insert
                raise NotFound('File or user not found')
            raise Conflict('File already assigned to this user')
        return assignment

    def create_bulk(self, file_id, user_ids) -> BulkResult:
        self._require_file(file_id)
        wanted = list(dict.fromkeys(user_ids))
        found = set(self.sess.scalars(select(User.id).where(User.id.in_(wanted))))
        if len(found) != len(wanted):
            raise NotFound('One or more users not found')

        created = []
        for user_id in wanted:
            assignment = self._insert(user_id, file_id)
            if assignment is not None:
                created.append(assignment)
        return BulkResult(created=len(created), skipped=len(user_ids) - len(created),
                          assignments=created)

    def get(self, assignment_id) -> Assignment:
        assignment = self.sess.get(Assignment, assignment_id)
        if assignment is None:
            raise NotFound('Assignment not found')
        return assignment

    def find(self, file_id, user_id) -> Assignment:
        stmt = select(Assignment).where(Assignment.file_id == file_id,
                                        Assignment.user_id == user_id)
        assignment = self.sess.scalars(stmt).one_or_none()
        if assignment is None:
            raise NotFound('Assignment not found')
        return assignment

    def _remove(self, assignment):
        snapshot = {
            'id': assignment.id,
            'fileId': assignment.file_id,
            'userId': assignment.user_id,
            'fileName': assignment.file.original_name,
            'userEmail': assignment.user.email,
        }
        self.sess.delete(assignment)
        self.sess.commit()
        return snapshot

    def delete(self, assignment_id) -> dict:
        """Remove a grant by id. A missing grant is NotFound, never a no-op."""
        return self._remove(self.get(assignment_id))

    def delete_for(self, file_id, user_id) -> dict:
        return self._remove(self.find(file_id, user_id))

    def list_by_file(self, file_id) -> List[Assignment]:
        stmt = (select(Assignment).where(Assignment.file_id == file_id)
                .order_by(Assignment.created_at))
        return list(self.sess.scalars(stmt))
