import re
from datetime import date

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from werkzeug.utils import secure_filename

from ..errors import UpstreamFailure

ZIP_CONTENT_TYPE = 'application/zip'
CHUNK_SIZE = 64 * 1024


def _sanitize_component(value: str) -> str:
    value = value.replace('..', '')
    value = re.sub(r'[/\\]', '-', value)
    value = re.sub(r'[^a-zA-Z0-9_-]', '_', value)
    return value[:50]


def safe_filename(filename: str) -> str:
    """Object-key form of a client filename, or '' when nothing usable is left.

    The stem is capped at 100 characters and the extension at 10.
    """
    safe = secure_filename(filename.replace('\\', '/'))
    stem, dot, ext = safe.rpartition('.')
    if not dot:
        stem, ext = safe, ''
    stem = stem[:100].strip('.')
    if not stem:
        return ''
    return f"{stem}.{ext[:10]}" if ext else stem


def storage_key(project_slug: str, filename: str, today: date = None) -> str:
    """Derive the object key ``projects/{slug}/{yyyy-mm-dd}/{filename}``.

    Both parts are sanitised; no separator from the caller survives.
    Raises ValueError when the filename sanitises to nothing.
    """
    name = safe_filename(filename)
    if not name:
        raise ValueError(f'unusable filename: {filename!r}')
    today = today or date.today()
    return f"projects/{_sanitize_component(project_slug)}/{today.isoformat()}/{name}"


class ObjectStore:
    """S3-compatible bucket access: put, presign, stream."""

    def __init__(self, bucket, endpoint=None, region=None, access_key=None, secret_key=None,
                 force_path_style=False, signed_url_expires=3600, client=None):
        self.bucket = bucket
        self.signed_url_expires = signed_url_expires
        if client is None:
            client = boto3.client(
                's3',
                endpoint_url=endpoint,
                region_name=region,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                config=Config(signature_version='s3v4',
                              s3={'addressing_style': 'path' if force_path_style else 'auto'}),
            )
        self.client = client

    @classmethod
    def from_config(cls, config):
        return cls(
            bucket=config['S3_BUCKET'],
            endpoint=config.get('S3_ENDPOINT'),
            region=config.get('S3_REGION'),
            access_key=config.get('S3_ACCESS_KEY'),
            secret_key=config.get('S3_SECRET_KEY'),
            force_path_style=config.get('S3_FORCE_PATH_STYLE', False),
            signed_url_expires=config.get('SIGNED_URL_EXPIRES_SECONDS', 3600),
        )

    def put_object(self, fileobj, key: str, sha256: str):
        try:
            self.client.upload_fileobj(
                fileobj, self.bucket, key,
                ExtraArgs={'ContentType': ZIP_CONTENT_TYPE, 'Metadata': {'checksum-sha256': sha256}},
            )
        except (BotoCoreError, ClientError) as e:
            raise UpstreamFailure(f'object store upload failed: {e}') from e

    def presigned_url(self, key: str) -> str:
        try:
            return self.client.generate_presigned_url(
                'get_object', Params={'Bucket': self.bucket, 'Key': key},
                ExpiresIn=self.signed_url_expires,
            )
        except (BotoCoreError, ClientError) as e:
            raise UpstreamFailure(f'presigning failed: {e}') from e

    def open_stream(self, key: str):
        """Return ``(chunk iterator, content length)`` for a stored object."""
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise UpstreamFailure(f'object store read failed: {e}') from e
        body = resp['Body']
        return body.iter_chunks(CHUNK_SIZE), resp.get('ContentLength')
