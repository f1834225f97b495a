import enum
import json
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Enum, BigInteger, UniqueConstraint
from sqlalchemy.orm import relationship

from .extensions import Base


def _uuid():
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    ADMIN = 'ADMIN'
    USER = 'USER'


class AuditAction(str, enum.Enum):
    LOGIN = 'LOGIN'
    LOGOUT = 'LOGOUT'
    UPLOAD = 'UPLOAD'
    DOWNLOAD = 'DOWNLOAD'
    CREATE_USER = 'CREATE_USER'
    DELETE_USER = 'DELETE_USER'
    RESET_PASSWORD = 'RESET_PASSWORD'
    ASSIGN_FILE = 'ASSIGN_FILE'
    UNASSIGN_FILE = 'UNASSIGN_FILE'
    SEED_ADMIN = 'SEED_ADMIN'


class TargetType(str, enum.Enum):
    USER = 'USER'
    FILE = 'FILE'
    ASSIGNMENT = 'ASSIGNMENT'


class User(Base):
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(Role, name='user_role'), nullable=False, default=Role.USER)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    assignments = relationship('Assignment', back_populates='user',
                               cascade='all, delete-orphan', passive_deletes=True)

    def summary(self):
        return {'id': self.id, 'email': self.email}

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'role': self.role.value,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<User {self.email} role={self.role.value}>"


class File(Base):
    __tablename__ = 'files'

    id = Column(String(36), primary_key=True, default=_uuid)
    original_name = Column(String(1024), nullable=False)
    project_slug = Column(String(50), nullable=False, index=True)
    storage_key = Column(String(1024), unique=True, nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    sha256 = Column(String(64), nullable=False, index=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    assignments = relationship('Assignment', back_populates='file',
                               cascade='all, delete-orphan', passive_deletes=True)

    def summary(self):
        return {'id': self.id, 'originalName': self.original_name, 'projectSlug': self.project_slug}

    def to_dict(self, include_assignees=False):
        out = {
            'id': self.id,
            'originalName': self.original_name,
            'projectSlug': self.project_slug,
            'sizeBytes': self.size_bytes,
            'sha256': self.sha256,
            'uploadedAt': self.uploaded_at.isoformat() if self.uploaded_at else None,
        }
        if include_assignees:
            out['assignedUsers'] = [a.user.summary() for a in self.assignments]
        return out

    def __repr__(self):
        return f"<File {self.original_name} project={self.project_slug}>"


class Assignment(Base):
    __tablename__ = 'assignments'
    __table_args__ = (UniqueConstraint('user_id', 'file_id', name='uq_assignment_user_file'),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    file_id = Column(String(36), ForeignKey('files.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship('User', back_populates='assignments')
    file = relationship('File', back_populates='assignments')

    def to_dict(self):
        return {
            'id': self.id,
            'user': self.user.summary(),
            'file': {'id': self.file.id, 'originalName': self.file.original_name},
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Assignment user={self.user_id} file={self.file_id}>"


class AuditLogEntry(Base):
    """Append-only; nothing in the application updates or deletes these rows."""
    __tablename__ = 'audit_logs'

    id = Column(String(36), primary_key=True, default=_uuid)
    # plain column, not a FK: entries outlive the users they mention
    actor_user_id = Column(String(36), nullable=True, index=True)
    action = Column(Enum(AuditAction, name='audit_action'), nullable=False, index=True)
    target_type = Column(Enum(TargetType, name='audit_target_type'), nullable=True)
    target_id = Column(String(36), nullable=True)
    ip_address = Column(String(64), nullable=True)
    metadata_json = Column('metadata', Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    @property
    def metadata_dict(self):
        return json.loads(self.metadata_json) if self.metadata_json else None

    def __repr__(self):
        return f"<Audit {self.action.value} actor={self.actor_user_id} obj={self.target_type}:{self.target_id}>"


class RateLimitCounter(Base):
    __tablename__ = 'rate_limit_counters'

    key = Column(String(255), primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<RateLimitCounter {self.key} count={self.count}>"
