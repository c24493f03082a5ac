"""
OneDrive Types
OneDrive 커넥터 타입 정의

- Graph DTO: dataclass + from_dict (응답 형태 정규화는 여기서만 수행)
- 호스트 입력 파라미터: Pydantic 모델
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any, Union
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ItemType(str, Enum):
    """아이템 유형"""
    FILE = "file"
    FOLDER = "folder"


class ConflictBehavior(str, Enum):
    """충돌 시 동작"""
    FAIL = "fail"
    REPLACE = "replace"
    RENAME = "rename"


# ============================================================================
# Graph DTO
# ============================================================================

@dataclass
class UserInfo:
    """사용자 정보"""
    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserInfo":
        user = data.get("user") or data
        return cls(
            id=user.get("id", ""),
            display_name=user.get("displayName"),
            email=user.get("email"),
        )


@dataclass
class ParentReference:
    """부모 폴더 참조"""
    id: Optional[str] = None
    path: Optional[str] = None
    drive_id: Optional[str] = None
    drive_type: Optional[str] = None
    site_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ParentReference":
        data = data or {}
        return cls(
            id=data.get("id"),
            path=data.get("path"),
            drive_id=data.get("driveId"),
            drive_type=data.get("driveType"),
            site_id=data.get("siteId"),
        )


def _user_or_none(data: Dict[str, Any], key: str) -> Optional[UserInfo]:
    value = data.get(key)
    return UserInfo.from_dict(value) if value else None


@dataclass
class FileItem:
    """파일 메타데이터"""
    id: str
    name: str
    parent: ParentReference = field(default_factory=ParentReference)
    size: int = 0
    mime_type: Optional[str] = None
    web_url: Optional[str] = None
    download_url: Optional[str] = None
    created_datetime: Optional[str] = None
    last_modified_datetime: Optional[str] = None
    created_by: Optional[UserInfo] = None
    last_modified_by: Optional[UserInfo] = None
    item_type: ItemType = ItemType.FILE

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FolderItem:
    """폴더 메타데이터"""
    id: str
    name: str
    parent: ParentReference = field(default_factory=ParentReference)
    child_count: int = 0
    size: int = 0
    web_url: Optional[str] = None
    created_datetime: Optional[str] = None
    last_modified_datetime: Optional[str] = None
    item_type: ItemType = ItemType.FOLDER

    @property
    def full_path(self) -> Optional[str]:
        """
        폴더 전체 경로 (부모 경로 + 이름)

        부모 경로나 이름이 없으면 None (경로를 계산할 수 없음)
        """
        if self.parent.path is None or not self.name:
            return None
        return f"{self.parent.path.rstrip('/')}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DriveItem = Union[FileItem, FolderItem]


def _mime_type(data: Dict[str, Any]) -> Optional[str]:
    # 중첩 ({"file": {"mimeType": ...}}) / 평탄화 ({"mimeType": ...}) 두 형태 모두 지원
    file_facet = data.get("file")
    if isinstance(file_facet, dict) and file_facet.get("mimeType"):
        return file_facet["mimeType"]
    flat = data.get("mimeType")
    if isinstance(flat, dict):
        return flat.get("mimeType")
    return flat


def _child_count(data: Dict[str, Any]) -> Optional[int]:
    folder_facet = data.get("folder")
    if isinstance(folder_facet, dict):
        return folder_facet.get("childCount", 0)
    return data.get("childCount")


def parse_drive_item(data: Dict[str, Any]) -> Optional[DriveItem]:
    """
    Graph driveItem JSON을 FileItem / FolderItem으로 변환

    파일/폴더 마커가 둘 다 없거나 둘 다 있으면 None

    Args:
        data: driveItem JSON

    Returns:
        FileItem, FolderItem 또는 None
    """
    is_file = data.get("file") is not None or _mime_type(data) is not None
    is_folder = data.get("folder") is not None or data.get("childCount") is not None
    if is_file == is_folder:
        return None

    item_id = data.get("id") or data.get("fileId") or ""
    parent = ParentReference.from_dict(data.get("parentReference"))

    if is_file:
        return FileItem(
            id=item_id,
            name=data.get("name", ""),
            parent=parent,
            size=data.get("size") or 0,
            mime_type=_mime_type(data) or "application/octet-stream",
            web_url=data.get("webUrl"),
            download_url=data.get("@microsoft.graph.downloadUrl"),
            created_datetime=data.get("createdDateTime"),
            last_modified_datetime=data.get("lastModifiedDateTime"),
            created_by=_user_or_none(data, "createdBy"),
            last_modified_by=_user_or_none(data, "lastModifiedBy"),
        )

    return FolderItem(
        id=item_id,
        name=data.get("name", ""),
        parent=parent,
        child_count=_child_count(data) or 0,
        size=data.get("size") or 0,
        web_url=data.get("webUrl"),
        created_datetime=data.get("createdDateTime"),
        last_modified_datetime=data.get("lastModifiedDateTime"),
    )


def parse_file_item(data: Dict[str, Any]) -> Optional[FileItem]:
    item = parse_drive_item(data)
    return item if isinstance(item, FileItem) else None


def parse_folder_item(data: Dict[str, Any]) -> Optional[FolderItem]:
    item = parse_drive_item(data)
    return item if isinstance(item, FolderItem) else None


@dataclass
class SubscriptionRecord:
    """Graph 변경 알림 구독"""
    id: str
    resource: str
    notification_url: Optional[str] = None
    expiration_datetime: Optional[str] = None
    change_type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubscriptionRecord":
        return cls(
            id=data.get("id", ""),
            resource=data.get("resource", ""),
            notification_url=data.get("notificationUrl"),
            expiration_datetime=data.get("expirationDateTime"),
            change_type=data.get("changeType"),
        )


@dataclass
class UploadSession:
    """재개 가능한 업로드 세션 상태"""
    upload_url: Optional[str] = None
    expiration_datetime: Optional[str] = None
    next_expected_ranges: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadSession":
        return cls(
            upload_url=data.get("uploadUrl"),
            expiration_datetime=data.get("expirationDateTime"),
            next_expected_ranges=data.get("nextExpectedRanges"),
        )


@dataclass
class DownloadedFile:
    """다운로드된 파일"""
    filename: str
    content_type: Optional[str]
    content: bytes


# ============================================================================
# 변경 추적 (delta) 상태
# ============================================================================

@dataclass
class PagedResult:
    """페이지 순회 결과"""
    items: List[Any] = field(default_factory=list)
    delta_token: Optional[str] = None


@dataclass
class FolderFilter:
    """호출 단위 폴더 필터 (저장되지 않음)"""
    parent_folder_id: Optional[str] = None
    include_subfolders: bool = False


@dataclass
class PollingMemory:
    """폴링 주기 사이에 호스트가 보관하는 상태"""
    delta_token: str

    def to_dict(self) -> Dict[str, Any]:
        return {"deltaToken": self.delta_token}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["PollingMemory"]:
        if not data or not data.get("deltaToken"):
            return None
        return cls(delta_token=data["deltaToken"])


@dataclass
class CycleResult:
    """한 번의 변경 확인 주기 결과"""
    new_token: str
    items: List[DriveItem] = field(default_factory=list)
    baseline: bool = False
    committed: bool = False  # 웹훅 경로에서 저장소에 새 token을 기록했는지

    @property
    def matched(self) -> bool:
        return bool(self.items)


@dataclass
class PollingEventResponse:
    """폴링 이벤트 응답"""
    fly_bird: bool
    memory: PollingMemory
    result: Optional[Dict[str, Any]] = None


@dataclass
class WebhookResponse:
    """웹훅 이벤트 응답"""
    status_code: int = 200
    preflight: bool = False
    result: Optional[Dict[str, Any]] = None


# ============================================================================
# 호스트 입력 파라미터
# ============================================================================

class FolderInput(BaseModel):
    """폴더 필터 입력"""

    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    parent_folder_id: Optional[str] = Field(
        None,
        alias="parentFolderId",
        description="Folder ID - 지정하면 해당 폴더의 변경만 조회",
    )


class IncludeSubfoldersInput(BaseModel):
    """하위 폴더 포함 여부 입력"""

    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    include_subfolders: Optional[bool] = Field(
        None,
        alias="includeSubfolders",
        description="Include changes in subfolders in the list of changed items",
    )


def build_folder_filter(
    folder: Optional[FolderInput] = None,
    include_subfolders: Optional[IncludeSubfoldersInput] = None,
) -> FolderFilter:
    """호스트 입력을 FolderFilter로 변환 (빈 문자열 ID는 필터 없음으로 처리)"""
    parent_folder_id = folder.parent_folder_id if folder else None
    return FolderFilter(
        parent_folder_id=parent_folder_id or None,
        include_subfolders=bool(include_subfolders and include_subfolders.include_subfolders),
    )


class WebhookPayload(BaseModel):
    """Bridge 서비스가 전달하는 웹훅 본문"""

    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    delta_token: str = Field(..., alias="deltaToken", min_length=1)


class UploadFileRequest(BaseModel):
    """파일 업로드 요청"""

    model_config = ConfigDict(extra='ignore')

    filename: str = Field(..., min_length=1)
    content: bytes
    content_type: Optional[str] = None
    conflict_behavior: ConflictBehavior = ConflictBehavior.REPLACE


class CreateFolderRequest(BaseModel):
    """폴더 생성 요청"""

    model_config = ConfigDict(extra='ignore')

    folder_name: str = Field(..., min_length=1)
    parent_folder_id: Optional[str] = None  # None이면 루트
    path_relative_to_root: Optional[str] = None
