"""
Backup module for EasyBackup.

This module handles the core backup functionality including:
- Archive model and naming convention
- Local archive repository (sources and compression)
- Remote object storage (S3 and compatible endpoints)
- Reconciliation of local and remote archive sets
- Sync orchestration
"""

from .archive import Archive, Location, generate_archive_name, is_archive_name
from .errors import (
    StorageError,
    StoreIOError,
    ObjectNotFound,
    NotConfigured,
    LocalIOError,
    LocalFileMissing,
    InvalidName
)
from .local import LocalArchiveRepository
from .storage import ObjectStore, S3ObjectStore, RemoteConfig, create_object_store
from .reconcile import RetentionPolicy, SyncPlan, plan_sync
from .orchestrator import SyncOrchestrator, SyncReport, RunState

__all__ = [
    'Archive',
    'Location',
    'generate_archive_name',
    'is_archive_name',
    'StorageError',
    'StoreIOError',
    'ObjectNotFound',
    'NotConfigured',
    'LocalIOError',
    'LocalFileMissing',
    'InvalidName',
    'LocalArchiveRepository',
    'ObjectStore',
    'S3ObjectStore',
    'RemoteConfig',
    'create_object_store',
    'RetentionPolicy',
    'SyncPlan',
    'plan_sync',
    'SyncOrchestrator',
    'SyncReport',
    'RunState'
]
