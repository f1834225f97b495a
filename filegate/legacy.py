"""Shared-secret album download.

An alternate deployment mode without user accounts: visitors exchange an
album code and password for the archive. Albums live in a JSON file::

    {"<code>": {"password_hash": "<argon2 hash>", "file": "<archive name>"}}

and archives in ``LEGACY_ALBUMS_DIR``.
"""
import json
import os

from flask import Blueprint, request, jsonify, current_app, send_file
from flask_wtf.csrf import generate_csrf, validate_csrf
from wtforms.validators import ValidationError

from .errors import ValidationFailed, Unauthenticated, UpstreamFailure
from .models import AuditAction
from .pipeline import throttle, record

legacy = Blueprint('legacy', __name__)


def load_albums(path):
    with open(path, 'r', encoding='utf-8') as fh:
        albums = json.load(fh)
    if not isinstance(albums, dict):
        raise ValueError(f'{path}: expected an object mapping codes to albums')
    return albums


@legacy.route('/csrf-token', methods=['GET'])
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()}), 200


@legacy.route('/download', methods=['POST'])
def download():
    throttle('legacy')

    try:
        validate_csrf(request.form.get('csrf_token', ''))
    except ValidationError:
        raise ValidationFailed('Invalid session. Reload the page and try again.')

    code = request.form.get('code', '').strip()
    password = request.form.get('password', '').strip()
    email = request.form.get('email', '').strip()
    if not code or not password:
        raise ValidationFailed('Code and password are required')

    album = load_albums(current_app.config['LEGACY_ALBUMS_FILE']).get(code)
    # unknown code and wrong password look the same to the caller
    if album is None or not current_app.credentials.verify(password, album.get('password_hash', '')):
        current_app.logger.info('legacy: rejected', extra={'code': code, 'ip': request.remote_addr})
        raise Unauthenticated('Invalid code or password')

    path = os.path.join(current_app.config['LEGACY_ALBUMS_DIR'], os.path.basename(album.get('file', '')))
    metadata = {'code': code, 'mode': 'legacy'}
    if email:
        metadata['email'] = email
    record(AuditAction.DOWNLOAD, metadata=metadata)
    if not os.path.isfile(path):
        raise UpstreamFailure(f'legacy archive missing: {path}')

    resp = send_file(path, mimetype='application/zip', as_attachment=True,
                     download_name=os.path.basename(path), max_age=0)
    resp.headers['Cache-Control'] = 'no-cache, must-revalidate'
    return resp
