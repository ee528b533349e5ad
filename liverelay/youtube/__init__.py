"""
YouTube integration: API client, broadcast lifecycle sync, replay
unlisting and title/thumbnail rotation.
"""

from liverelay.youtube.client import BroadcastDraft, UnlistOutcome, YouTubeClient
from liverelay.youtube.credentials import CredentialProvider
from liverelay.youtube.lifecycle import BroadcastLifecycleSync
from liverelay.youtube.retry import RetryConfig, RetryManager
from liverelay.youtube.rotation import (
    BroadcastPlanner,
    BroadcastTemplate,
    PlannedBroadcast,
    RotationIndexStore,
    RotationPick,
    list_folder_items,
    select_sequential,
)
from liverelay.youtube.unlist import PendingUnlist, UnlistRetryService

__all__ = [
    "BroadcastDraft",
    "BroadcastLifecycleSync",
    "BroadcastPlanner",
    "BroadcastTemplate",
    "CredentialProvider",
    "PendingUnlist",
    "PlannedBroadcast",
    "RetryConfig",
    "RetryManager",
    "RotationIndexStore",
    "RotationPick",
    "UnlistOutcome",
    "UnlistRetryService",
    "YouTubeClient",
    "list_folder_items",
    "select_sequential",
]
