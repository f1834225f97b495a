from flask import Blueprint, request, jsonify

from ..ledger import AssignmentLedger
from ..models import AuditAction, TargetType
from ..pipeline import get_session, guarded, record
from ..policy import Operation
from ..validation import validate, json_body, CREATE_ASSIGNMENT_SCHEMA, BULK_ASSIGNMENT_SCHEMA

assignments_bp = Blueprint('assignments', __name__)


def _ledger():
    return AssignmentLedger(get_session())


@assignments_bp.route('', methods=['POST'])
@guarded(Operation.ASSIGN)
def create_assignment():
    data = validate(CREATE_ASSIGNMENT_SCHEMA, json_body(request))
    assignment = _ledger().create(data['userId'], data['fileId'])
    record(AuditAction.ASSIGN_FILE, TargetType.ASSIGNMENT, assignment.id, {
        'fileId': assignment.file_id,
        'userId': assignment.user_id,
        'fileName': assignment.file.original_name,
        'userEmail': assignment.user.email,
    })
    return jsonify({'message': 'File assigned successfully', 'assignment': assignment.to_dict()}), 201


@assignments_bp.route('/bulk', methods=['POST'])
@guarded(Operation.ASSIGN)
def bulk_assign():
    data = validate(BULK_ASSIGNMENT_SCHEMA, json_body(request))
    result = _ledger().create_bulk(data['fileId'], data['userIds'])
    record(AuditAction.ASSIGN_FILE, TargetType.FILE, data['fileId'], {
        'fileId': data['fileId'],
        'userIds': [a.user_id for a in result.assignments],
        'assignedCount': result.created,
        'skippedCount': result.skipped,
    })
    return jsonify({'message': 'Files assigned successfully',
                    'created': result.created, 'skipped': result.skipped}), 201


@assignments_bp.route('/<string:assignment_id>', methods=['DELETE'])
@guarded(Operation.UNASSIGN)
def delete_assignment(assignment_id: str):
    removed = _ledger().delete(assignment_id)
    record(AuditAction.UNASSIGN_FILE, TargetType.ASSIGNMENT, removed.pop('id'), removed)
    return jsonify({'message': 'Assignment removed successfully'}), 200


@assignments_bp.route('/file/<string:file_id>/user/<string:user_id>', methods=['DELETE'])
@guarded(Operation.UNASSIGN)
def delete_assignment_for(file_id: str, user_id: str):
    removed = _ledger().delete_for(file_id, user_id)
    record(AuditAction.UNASSIGN_FILE, TargetType.ASSIGNMENT, removed.pop('id'), removed)
    return jsonify({'message': 'Assignment removed successfully'}), 200


@assignments_bp.route('/file/<string:file_id>', methods=['GET'])
@guarded(Operation.ASSIGNMENT_LIST)
def list_for_file(file_id: str):
    assignments = _ledger().list_by_file(file_id)
    return jsonify({
        'fileId': file_id,
        'assignedUsers': [{
            'assignmentId': a.id,
            'user': {'id': a.user.id, 'email': a.user.email, 'role': a.user.role.value},
            'assignedAt': a.created_at.isoformat(),
        } for a in assignments],
    }), 200
