"""
OneDrive Connector
Microsoft Graph API 기반 OneDrive 액션 / 데이터 소스 / 변경 이벤트 (delta 피드)
"""

from .config import Settings
from .graph_onedrive_client import GraphOneDriveClient, StaticTokenProvider
from .graph_delta_query import GraphDeltaQuery, extract_delta_token
from .delta_reconciler import DeltaReconciler
from .onedrive_service import OneDriveService
from .subscription_manager import SubscriptionManager
from .token_store import (
    InMemoryTokenStore,
    SqliteTokenStore,
    BridgeTokenStore,
    create_token_store,
)
from .polling import PollingEvents
from .webhook_events import WebhookEvents
from .onedrive_errors import (
    OneDriveError,
    OneDriveApplicationError,
    OneDriveNotFoundError,
    OneDriveConflictError,
    OneDriveMisconfigurationError,
)
from .onedrive_types import (
    FileItem,
    FolderItem,
    DriveItem,
    FolderFilter,
    PollingMemory,
    CycleResult,
    WebhookPayload,
    UploadFileRequest,
    CreateFolderRequest,
)

__all__ = [
    # Config
    "Settings",
    # Client
    "GraphOneDriveClient",
    "StaticTokenProvider",
    "GraphDeltaQuery",
    "extract_delta_token",
    # Change tracking
    "DeltaReconciler",
    "SubscriptionManager",
    "PollingEvents",
    "WebhookEvents",
    # Token store
    "InMemoryTokenStore",
    "SqliteTokenStore",
    "BridgeTokenStore",
    "create_token_store",
    # Service
    "OneDriveService",
    # Errors
    "OneDriveError",
    "OneDriveApplicationError",
    "OneDriveNotFoundError",
    "OneDriveConflictError",
    "OneDriveMisconfigurationError",
    # Types
    "FileItem",
    "FolderItem",
    "DriveItem",
    "FolderFilter",
    "PollingMemory",
    "CycleResult",
    "WebhookPayload",
    "UploadFileRequest",
    "CreateFolderRequest",
]

__version__ = "1.0.0"
