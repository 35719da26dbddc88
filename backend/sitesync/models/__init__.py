from sitesync.models.sync import (
    AuditLog,
    KvEntry,
    Site,
    SiteMembership,
    SyncFailure,
    User,
)

__all__ = [
    'AuditLog',
    'KvEntry',
    'Site',
    'SiteMembership',
    'SyncFailure',
    'User',
]
