from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from sitesync.db.base import Base


class User(Base):
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True)
    name = Column(String(128), nullable=False, default='')
    name_masked = Column(String(128), nullable=False, default='')
    phone_hash = Column(String(64), nullable=True, index=True)
    phone_encrypted = Column(Text, nullable=True)
    dob_hash = Column(String(64), nullable=True)
    dob_encrypted = Column(Text, nullable=True)
    company_code = Column(String(64), nullable=True)
    company_name = Column(String(128), nullable=True)
    role = Column(String(16), nullable=False, default='WORKER')
    external_system = Column(String(32), nullable=True)
    external_worker_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    entry_day = Column(String(16), nullable=True)
    retire_day = Column(String(16), nullable=True)
    source_updated_at = Column(DateTime, nullable=True)
    deactivated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('ix_users_external', 'external_system', 'external_worker_id'),
    )


class Site(Base):
    __tablename__ = 'sites'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False)
    active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class SiteMembership(Base):
    __tablename__ = 'site_memberships'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    site_id = Column(Integer, nullable=False, index=True)
    role = Column(String(16), nullable=False, default='WORKER')
    status = Column(String(16), nullable=False, default='ACTIVE')
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'site_id', name='uq_site_memberships_user_site'),
    )


class SyncFailure(Base):
    __tablename__ = 'sync_failures'

    id = Column(Integer, primary_key=True, index=True)
    correlation_id = Column(String(36), nullable=False, unique=True, index=True)
    sync_type = Column(String(32), nullable=False, index=True)
    status = Column(String(16), nullable=False, default='OPEN', index=True)
    error_code = Column(String(64), nullable=False, default='UNKNOWN')
    error_message = Column(Text, nullable=False, default='')
    lock_name = Column(String(64), nullable=True)
    payload_json = Column(Text, nullable=False, default='{}')
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id = Column(Integer, primary_key=True, index=True)
    entity = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False)
    actor = Column(String(64), nullable=False, default='system')
    target_id = Column(String(64), nullable=True)
    payload_json = Column(Text, nullable=False, default='{}')
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class KvEntry(Base):
    __tablename__ = 'kv_entries'

    key = Column(String(255), primary_key=True)
    value_json = Column(Text, nullable=False, default='null')
    expires_at = Column(DateTime, nullable=True, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
