import hashlib
import math
import tempfile
import zipfile
from urllib.parse import quote

from flask import Blueprint, request, jsonify, current_app, g, redirect, Response, stream_with_context
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..errors import ValidationFailed, NotFound, Conflict
from ..models import File, Assignment, AuditAction, TargetType
from ..pipeline import get_session, guarded, record
from ..policy import Operation, authorize
from ..storage import safe_filename, storage_key
from ..validation import validate, pagination, UPLOAD_SCHEMA

files_bp = Blueprint('files', __name__)

ZIP_MIMETYPES = {'application/zip', 'application/x-zip-compressed'}
CHUNK_SIZE = 8192
SPOOL_MAX_MEMORY = 8 * 1024 * 1024


def _client_filename(raw: str) -> str:
    # browsers may send a full client-side path
    return raw.replace('\\', '/').rsplit('/', 1)[-1].strip()


def _declared_zip(upload) -> bool:
    return upload.mimetype in ZIP_MIMETYPES or upload.filename.lower().endswith('.zip')


def _spool_upload(upload, max_bytes):
    """Copy the upload into a spooled temp file, returning (spool, size, sha256)."""
    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
    h = hashlib.sha256()
    total = 0
    try:
        while True:
            chunk = upload.stream.read(CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > max_bytes:
                raise ValidationFailed(f'File too large. Maximum size is {max_bytes // (1024 * 1024)}MB')
            h.update(chunk)
            spool.write(chunk)
    except Exception:
        spool.close()
        raise
    spool.seek(0)
    return spool, total, h.hexdigest()


@files_bp.route('/upload', methods=['POST'])
@guarded(Operation.FILE_UPLOAD, limit='upload')
def upload():
    f = request.files.get('file')
    if f is None or not f.filename:
        raise ValidationFailed('No file uploaded')
    form = validate(UPLOAD_SCHEMA, {k: request.form[k] for k in ('projectSlug',) if k in request.form})
    project_slug = form['projectSlug']
    original_name = _client_filename(f.filename)
    if not original_name or not _declared_zip(f):
        raise ValidationFailed('Only .zip files are allowed')
    if not safe_filename(original_name):
        raise ValidationFailed('Invalid file name')

    max_bytes = current_app.config['MAX_UPLOAD_MB'] * 1024 * 1024
    if request.content_length and request.content_length > max_bytes + 64 * 1024:
        raise ValidationFailed(f"File too large. Maximum size is {current_app.config['MAX_UPLOAD_MB']}MB")

    spool, size, sha256 = _spool_upload(f, max_bytes)
    with spool:
        if not zipfile.is_zipfile(spool):
            raise ValidationFailed('Only .zip files are allowed')
        spool.seek(0)

        key = storage_key(project_slug, original_name)
        sess = get_session()
        file_rec = File(original_name=original_name, project_slug=project_slug, storage_key=key,
                        size_bytes=size, sha256=sha256)
        sess.add(file_rec)
        # the unique storage_key claims the key before any bytes reach the bucket
        try:
            sess.flush()
        except IntegrityError:
            sess.rollback()
            raise Conflict('A file with this name was already uploaded to this project today')

        try:
            current_app.object_store.put_object(spool, key, sha256)
        except Exception:
            sess.rollback()
            raise
    sess.commit()

    current_app.logger.info('upload: stored', extra={'file_id': file_rec.id, 'storage_key': key, 'size': size})
    record(AuditAction.UPLOAD, TargetType.FILE, file_rec.id, {
        'originalName': original_name,
        'projectSlug': project_slug,
        'sizeBytes': size,
    })
    return jsonify({'message': 'File uploaded successfully', 'file': file_rec.to_dict()}), 201


@files_bp.route('', methods=['GET'])
@guarded(Operation.FILE_LIST_OWN)
def list_files():
    page, limit = pagination(request.args)
    sess = get_session()
    identity = g.identity
    list_all = authorize(identity, Operation.FILE_LIST_ALL).allowed

    stmt = select(File)
    count_stmt = select(func.count(File.id))
    if list_all:
        stmt = stmt.options(selectinload(File.assignments).selectinload(Assignment.user))
    else:
        stmt = stmt.join(Assignment).where(Assignment.user_id == identity.id)
        count_stmt = count_stmt.join(Assignment).where(Assignment.user_id == identity.id)

    total = sess.scalar(count_stmt)
    files = sess.scalars(
        stmt.order_by(File.uploaded_at.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    return jsonify({
        'files': [f.to_dict(include_assignees=list_all) for f in files],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'totalPages': math.ceil(total / limit),
        },
    }), 200


@files_bp.route('/<string:file_id>', methods=['GET'])
@guarded(Operation.FILE_GET_OWN, file_arg='file_id')
def get_file(file_id: str):
    file_rec = get_session().get(File, file_id)
    if file_rec is None:
        raise NotFound('File not found')
    return jsonify({'file': file_rec.to_dict(include_assignees=g.identity.is_admin)}), 200


@files_bp.route('/<string:file_id>/download', methods=['GET'])
@guarded(Operation.FILE_DOWNLOAD_OWN, limit='download', file_arg='file_id')
def download_file(file_id: str):
    file_rec = get_session().get(File, file_id)
    if file_rec is None:
        raise NotFound('File not found')

    mode = current_app.config['DOWNLOAD_MODE']
    # logged before the store is contacted so failed downloads still leave a trace
    record(AuditAction.DOWNLOAD, TargetType.FILE, file_rec.id, {
        'originalName': file_rec.original_name,
        'mode': mode,
    })

    store = current_app.object_store
    if mode == 'presigned':
        return redirect(store.presigned_url(file_rec.storage_key))

    chunks, content_length = store.open_stream(file_rec.storage_key)
    headers = {'Content-Disposition': f'attachment; filename="{quote(file_rec.original_name)}"'}
    if content_length:
        headers['Content-Length'] = str(content_length)
    return Response(stream_with_context(chunks), mimetype='application/zip', headers=headers)


@files_bp.route('/<string:file_id>', methods=['DELETE'])
@guarded(Operation.FILE_DELETE)
def delete_file(file_id: str):
    sess = get_session()
    file_rec = sess.get(File, file_id)
    if file_rec is None:
        current_app.logger.info('delete: file not found', extra={'file_id': file_id, 'user_id': g.identity.id})
        raise NotFound('File not found')

    # assignments cascade; the stored object is intentionally left in place
    sess.delete(file_rec)
    sess.commit()
    current_app.logger.info('delete: success', extra={'file_id': file_id, 'user_id': g.identity.id,
                                                      'storage_key': file_rec.storage_key})
    return jsonify({'message': 'File deleted successfully'}), 200
