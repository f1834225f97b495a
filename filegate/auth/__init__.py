from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy import select

from ..errors import Unauthenticated
from ..models import User, AuditAction, TargetType
from ..pipeline import get_session, guarded, optional_auth, rate_limited, record
from ..policy import Operation
from ..tokens import Identity
from ..validation import validate, json_body, LOGIN_SCHEMA

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/login', methods=['POST'])
@rate_limited('auth')
def login():
    data = validate(LOGIN_SCHEMA, json_body(request))
    email = data['email'].strip()
    password = data['password']

    sess = get_session()
    user = sess.scalars(select(User).where(User.email == email)).one_or_none()
    credentials = current_app.credentials
    if user is None or not credentials.verify(password, user.password_hash):
        current_app.logger.info('login failed', extra={'ip': request.remote_addr})
        raise Unauthenticated('Invalid email or password')

    if credentials.needs_rehash(user.password_hash):
        user.password_hash = credentials.hash(password)
        sess.commit()

    identity = Identity.from_user(user)
    g.identity = identity
    token = current_app.tokens.issue(identity)
    record(AuditAction.LOGIN, TargetType.USER, user.id)
    return jsonify({'token': token, 'user': identity.to_dict()}), 200


@auth_bp.route('/me', methods=['GET'])
@guarded(Operation.SESSION)
def me():
    # loaded by authenticate(); comes from the identity map
    user = get_session().get(User, g.identity.id)
    return jsonify({'user': user.to_dict()}), 200


@auth_bp.route('/refresh', methods=['POST'])
@guarded(Operation.SESSION)
def refresh():
    return jsonify({'token': current_app.tokens.issue(g.identity)}), 200


@auth_bp.route('/logout', methods=['POST'])
@guarded(Operation.SESSION)
def logout():
    # tokens are stateless; the client discards its copy
    record(AuditAction.LOGOUT, TargetType.USER, g.identity.id)
    return jsonify({'status': 'ok'}), 200


@auth_bp.route('/session', methods=['GET'])
@optional_auth
def session_status():
    identity = g.identity
    if identity is None:
        return jsonify({'authenticated': False}), 200
    return jsonify({'authenticated': True, 'user': identity.to_dict()}), 200
