import math

from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..errors import NotFound, Conflict
from ..models import User, Assignment, Role, AuditAction, TargetType
from ..pipeline import get_session, guarded, record
from ..policy import Operation
from ..validation import validate, json_body, pagination, CREATE_USER_SCHEMA, UPDATE_USER_SCHEMA

users_bp = Blueprint('users', __name__)


def _get_user(sess, user_id):
    user = sess.get(User, user_id)
    if user is None:
        raise NotFound('User not found')
    return user


@users_bp.route('', methods=['POST'])
@guarded(Operation.USER_CREATE)
def create_user():
    data = validate(CREATE_USER_SCHEMA, json_body(request))
    user = User(
        email=data['email'].strip(),
        password_hash=current_app.credentials.hash(data['password']),
        role=Role(data.get('role', Role.USER.value)),
    )
    sess = get_session()
    sess.add(user)
    try:
        sess.commit()
    except IntegrityError:
        sess.rollback()
        raise Conflict('Email already in use')

    record(AuditAction.CREATE_USER, TargetType.USER, user.id, {'email': user.email, 'role': user.role.value})
    return jsonify({'message': 'User created successfully', 'user': user.to_dict()}), 201


@users_bp.route('', methods=['GET'])
@guarded(Operation.USER_LIST)
def list_users():
    page, limit = pagination(request.args)
    sess = get_session()
    total = sess.scalar(select(func.count(User.id)))
    rows = sess.execute(
        select(User, func.count(Assignment.id))
        .outerjoin(Assignment, Assignment.user_id == User.id)
        .group_by(User.id)
        .order_by(User.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    users = []
    for user, assigned in rows:
        out = user.to_dict()
        out['assignedFilesCount'] = assigned
        users.append(out)
    return jsonify({
        'users': users,
        'pagination': {'page': page, 'limit': limit, 'total': total, 'totalPages': math.ceil(total / limit)},
    }), 200


@users_bp.route('/<string:user_id>', methods=['GET'])
@guarded(Operation.USER_GET)
def get_user(user_id: str):
    sess = get_session()
    user = sess.scalars(
        select(User).where(User.id == user_id)
        .options(selectinload(User.assignments).selectinload(Assignment.file))
    ).one_or_none()
    if user is None:
        raise NotFound('User not found')
    out = user.to_dict()
    out['assignedFiles'] = [a.file.summary() for a in user.assignments]
    return jsonify({'user': out}), 200


@users_bp.route('/<string:user_id>', methods=['PATCH'])
@guarded(Operation.USER_UPDATE)
def update_user(user_id: str):
    updates = validate(UPDATE_USER_SCHEMA, json_body(request))
    sess = get_session()
    user = _get_user(sess, user_id)
    if 'email' in updates:
        user.email = updates['email'].strip()
    if 'role' in updates:
        user.role = Role(updates['role'])
    try:
        sess.commit()
    except IntegrityError:
        sess.rollback()
        raise Conflict('Email already in use')

    current_app.logger.info('user updated', extra={'user_id': user.id, 'actor_id': g.identity.id,
                                                   'fields': sorted(updates)})
    return jsonify({'message': 'User updated successfully', 'user': user.to_dict()}), 200


@users_bp.route('/<string:user_id>/reset-password', methods=['PATCH'])
@guarded(Operation.PASSWORD_RESET)
def reset_password(user_id: str):
    sess = get_session()
    user = _get_user(sess, user_id)
    credentials = current_app.credentials
    temporary = credentials.generate_temporary_password(16)
    user.password_hash = credentials.hash(temporary)
    sess.commit()

    record(AuditAction.RESET_PASSWORD, TargetType.USER, user.id, {'targetEmail': user.email})
    return jsonify({
        'message': 'Password reset successfully',
        'temporaryPassword': temporary,
        'warning': 'This password will only be shown once. Please share it securely with the user.',
    }), 200


@users_bp.route('/<string:user_id>', methods=['DELETE'])
@guarded(Operation.USER_DELETE, user_arg='user_id')
def delete_user(user_id: str):
    sess = get_session()
    user = _get_user(sess, user_id)
    email = user.email
    sess.delete(user)
    sess.commit()

    record(AuditAction.DELETE_USER, TargetType.USER, user_id, {'deletedEmail': email})
    return jsonify({'message': 'User deleted successfully'}), 200
