# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync - Encrypted cloud backup and restore for local-first health data.

Turns a local data snapshot into a passphrase-protected blob the server
cannot read, checks it against the remote copy before overwriting, and
reverses the process on restore. Package name: pocketsync.
"""

__version__ = "0.1.0"

# Configuration
from pocketsync.config import SyncConfig, create_config

# Orchestration
from pocketsync.pipeline import BackupPipeline, PipelineState

# Collaborators
from pocketsync.metadata import SyncMetadataStore
from pocketsync.snapshots import LocalSnapshotVault
from pocketsync.store import DomainStore, SQLiteDomainStore
from pocketsync.transport import BlobTransport, InMemoryTransport
from pocketsync.progress import ProgressQueue

# Passphrase helpers for the UI
from pocketsync.crypto.passphrase import score_strength, validate_passphrase

# Data model
from pocketsync.models import (
    BackupReceipt,
    ConflictStatus,
    ProgressStage,
    ProgressUpdate,
    RestoreReceipt,
    SyncMetadata,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "SyncConfig",
    "create_config",
    # Orchestration
    "BackupPipeline",
    "PipelineState",
    # Collaborators
    "SyncMetadataStore",
    "LocalSnapshotVault",
    "DomainStore",
    "SQLiteDomainStore",
    "BlobTransport",
    "InMemoryTransport",
    "ProgressQueue",
    # Passphrase
    "score_strength",
    "validate_passphrase",
    # Models
    "BackupReceipt",
    "ConflictStatus",
    "ProgressStage",
    "ProgressUpdate",
    "RestoreReceipt",
    "SyncMetadata",
]
