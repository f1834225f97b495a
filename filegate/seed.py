import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .models import User, Role, AuditAction, TargetType

logger = logging.getLogger(__name__)


def seed_admin(app, email, password):
    """Create the first ADMIN account unless the email is already taken.

    Returns the admin user, or None when it already existed.
    """
    sess = app.db_session()
    existing = sess.scalars(select(User).where(User.email == email)).one_or_none()
    if existing is not None:
        logger.info('seed: admin already exists', extra={'email': email})
        return None

    try:
        admin = User(email=email, password_hash=app.credentials.hash(password), role=Role.ADMIN)
        sess.add(admin)
        sess.commit()
    except SQLAlchemyError:
        sess.rollback()
        app.audit.append(None, AuditAction.SEED_ADMIN, metadata={'status': 'failed', 'email': email})
        raise

    app.audit.append(admin.id, AuditAction.SEED_ADMIN, TargetType.USER, admin.id,
                     metadata={'status': 'created'})
    logger.info('seed: admin created', extra={'user_id': admin.id})
    return admin
