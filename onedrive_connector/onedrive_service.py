"""
OneDrive Service - 파일/폴더 액션 Facade
각 액션은 Graph 요청 하나(또는 페이지 순회)와 응답 변환으로 구성됨
"""

import logging
import mimetypes
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote

from core.protocols import TokenProviderProtocol
from .config import Settings
from .graph_delta_query import GraphDeltaQuery
from .graph_onedrive_client import GraphOneDriveClient
from .onedrive_errors import ErrorMessages, OneDriveApplicationError, OneDriveError
from .onedrive_types import (
    ConflictBehavior,
    CreateFolderRequest,
    DownloadedFile,
    FileItem,
    FolderItem,
    parse_drive_item,
    parse_file_item,
    parse_folder_item,
    UploadFileRequest,
)
from .upload_session import ResumableUpload

logger = logging.getLogger(__name__)

_FILENAME_STAR = re.compile(r"filename\*\s*=\s*(?:[\w-]+)?'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME = re.compile(r'filename\s*=\s*"?([^";]+)"?', re.IGNORECASE)


def filename_from_content_disposition(header: Optional[str], fallback: str = "file") -> str:
    """
    Content-Disposition 헤더에서 파일명 추출

    filename*=UTF-8''... 형식을 우선 사용
    """
    if not header:
        return fallback
    match = _FILENAME_STAR.search(header)
    if match:
        return unquote(match.group(1).strip())
    match = _FILENAME.search(header)
    if match:
        return match.group(1).strip()
    return fallback


def _parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class OneDriveService:
    """
    GraphOneDriveClient 위의 액션 레이어

    - 응답은 FileItem / FolderItem 으로 변환해서 반환
    - 오류는 OneDriveError 계열로 그대로 전파
    """

    def __init__(
        self,
        token_provider: Optional[TokenProviderProtocol] = None,
        settings: Optional[Settings] = None,
        client: Optional[GraphOneDriveClient] = None,
    ):
        self.settings = settings or (client.settings if client else Settings())
        self._token_provider = token_provider
        self._client: Optional[GraphOneDriveClient] = client
        self._initialized = False

    async def initialize(self) -> bool:
        """서비스 초기화"""
        if self._initialized:
            return True

        if self._client is None:
            if self._token_provider is None:
                raise ValueError("token_provider or client is required")
            self._client = GraphOneDriveClient(self._token_provider, self.settings)

        if await self._client.initialize():
            self._initialized = True
            return True
        return False

    def _ensure_initialized(self):
        """초기화 확인"""
        if not self._initialized or not self._client:
            raise RuntimeError("OneDriveService not initialized. Call initialize() first.")

    async def close(self):
        """리소스 정리"""
        if self._client:
            await self._client.close()
            self._client = None
        self._initialized = False

    @property
    def client(self) -> GraphOneDriveClient:
        self._ensure_initialized()
        return self._client

    # ========================================================================
    # 파일 메서드
    # ========================================================================

    async def get_file_metadata(self, file_id: str) -> FileItem:
        """파일 메타데이터 조회 (ID)"""
        self._ensure_initialized()
        data = await self._client.get_item(file_id)
        item = parse_drive_item(data)
        if not isinstance(item, FileItem):
            raise OneDriveApplicationError(ErrorMessages.ID_POINTS_TO_FOLDER)
        return item

    async def get_file_metadata_by_path(self, path: str) -> FileItem:
        """
        파일 메타데이터 조회 (루트 기준 경로)

        Raises:
            OneDriveApplicationError: 경로가 폴더를 가리키는 경우
        """
        self._ensure_initialized()
        data = await self._client.get_item_by_path(path)
        item = parse_drive_item(data)
        if not isinstance(item, FileItem):
            raise OneDriveApplicationError(ErrorMessages.PATH_POINTS_TO_FOLDER.format(path=path))
        return item

    async def list_files_in_folder(self, folder_id: str) -> List[FileItem]:
        """폴더 안의 파일 목록 (하위 폴더 제외, 모든 페이지)"""
        self._ensure_initialized()
        result = await GraphDeltaQuery(self._client).fetch_all(
            self._client.drive(f"/items/{folder_id}/children"), parse_file_item
        )
        return result.items

    async def download_file(self, file_id: str) -> DownloadedFile:
        """파일 다운로드 (ID)"""
        self._ensure_initialized()
        return await self._download(self._client.drive(f"/items/{file_id}/content"), file_id)

    async def download_file_by_path(self, path: str) -> DownloadedFile:
        """파일 다운로드 (루트 기준 경로)"""
        self._ensure_initialized()
        path = path.strip("/")
        fallback = path.rsplit("/", 1)[-1] or "file"
        return await self._download(self._client.drive(f"/root:/{quote(path)}:/content"), fallback)

    async def _download(self, endpoint: str, fallback_name: str) -> DownloadedFile:
        content, headers, content_type = await self._client.request_raw("GET", endpoint)
        filename = filename_from_content_disposition(headers.get("Content-Disposition"), fallback_name)
        logger.info(f"다운로드 완료: {filename} ({len(content):,} bytes)")
        return DownloadedFile(filename=filename, content_type=content_type, content=content)

    async def upload_file(
        self,
        parent_folder_id: Optional[str],
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
        conflict_behavior: ConflictBehavior = ConflictBehavior.REPLACE,
    ) -> FileItem:
        """
        파일 업로드

        simple_upload_limit 미만은 한 번의 PUT, 이상은 업로드 세션 사용

        Args:
            parent_folder_id: 업로드할 폴더 ID (없으면 root)
            filename: 파일명
            content: 파일 내용
            content_type: Content-Type (없으면 파일명으로 추정)
            conflict_behavior: fail / replace / rename

        Returns:
            업로드된 FileItem
        """
        self._ensure_initialized()
        parent_folder_id = (parent_folder_id or "").strip() or "root"
        conflict_behavior = ConflictBehavior(conflict_behavior)
        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"

        if len(content) >= self.settings.get("simple_upload_limit", 4194304):
            uploader = ResumableUpload(self._client, self.settings)
            return await uploader.upload(parent_folder_id, filename, content, content_type, conflict_behavior)

        endpoint = self._client.drive(
            f"/items/{parent_folder_id}:/{quote(filename)}:/content"
            f"?@microsoft.graph.conflictBehavior={conflict_behavior.value}"
        )
        data = await self._client.request("PUT", endpoint, data=content, content_type=content_type)
        item = parse_file_item(data)
        if item is None:
            raise OneDriveApplicationError(f"Upload of '{filename}' finished without file metadata.")
        logger.info(f"업로드 완료: {filename} ({len(content):,} bytes)")
        return item

    async def upload(self, parent_folder_id: Optional[str], request: UploadFileRequest) -> FileItem:
        """UploadFileRequest 입력으로 파일 업로드"""
        return await self.upload_file(
            parent_folder_id,
            request.filename,
            request.content,
            request.content_type,
            request.conflict_behavior,
        )

    async def delete_file(self, file_id: str) -> None:
        """파일 삭제"""
        self._ensure_initialized()
        await self._client.request("DELETE", self._client.drive(f"/items/{file_id}"))
        logger.info(f"파일 삭제: {file_id}")

    async def list_changed_files(self, hours: int) -> List[FileItem]:
        """
        최근 N시간 안에 수정된 파일 목록

        저장된 token 없이 delta 피드 전체를 순회하고 lastModifiedDateTime으로 거름
        """
        self._ensure_initialized()
        if hours <= 0:
            raise OneDriveApplicationError("Hours must be a positive number.")

        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        result = await GraphDeltaQuery(self._client).get_changed_items(None, parse_file_item)

        changed = []
        for item in result.items:
            modified = _parse_graph_datetime(item.last_modified_datetime)
            if modified is not None and modified >= since:
                changed.append(item)
        return changed

    # ========================================================================
    # 폴더 메서드
    # ========================================================================

    async def get_folder_metadata(self, folder_id: str) -> FolderItem:
        """폴더 메타데이터 조회"""
        self._ensure_initialized()
        data = await self._client.get_item(folder_id)
        item = parse_drive_item(data)
        if not isinstance(item, FolderItem):
            raise OneDriveApplicationError(ErrorMessages.ID_POINTS_TO_FILE)
        return item

    async def create_folder(self, parent_folder_id: Optional[str], folder_name: str) -> FolderItem:
        """상위 폴더 ID 아래에 폴더 생성"""
        self._ensure_initialized()
        parent_folder_id = (parent_folder_id or "").strip() or "root"
        return await self._create_folder(
            self._client.drive(f"/items/{parent_folder_id}/children"), folder_name
        )

    async def create_folder_at_path(self, path: Optional[str], folder_name: str) -> FolderItem:
        """루트 기준 경로 아래에 폴더 생성 (빈 경로는 루트)"""
        self._ensure_initialized()
        path = (path or "").strip("/")
        endpoint = f"/root:/{quote(path)}:/children" if path else "/root/children"
        return await self._create_folder(self._client.drive(endpoint), folder_name)

    async def create(self, request: CreateFolderRequest) -> FolderItem:
        """CreateFolderRequest 입력으로 폴더 생성 (경로가 있으면 경로 기준)"""
        if request.path_relative_to_root is not None:
            return await self.create_folder_at_path(request.path_relative_to_root, request.folder_name)
        return await self.create_folder(request.parent_folder_id, request.folder_name)

    async def _create_folder(self, endpoint: str, folder_name: str) -> FolderItem:
        if not folder_name or not folder_name.strip():
            raise OneDriveApplicationError(ErrorMessages.INVALID_FOLDER_NAME)

        data = await self._client.request(
            "POST",
            endpoint,
            json_data={
                "name": folder_name,
                "folder": {},
                "@microsoft.graph.conflictBehavior": ConflictBehavior.FAIL.value,
            },
        )
        folder = parse_folder_item(data)
        if folder is None:
            raise OneDriveApplicationError(f"Folder '{folder_name}' was not created.")
        logger.info(f"폴더 생성: {folder_name} ({folder.id})")
        return folder

    async def delete_folder(self, folder_id: str) -> None:
        """폴더 삭제 (root 삭제는 거부)"""
        self._ensure_initialized()
        if folder_id.strip().lower() == "root":
            raise OneDriveApplicationError(ErrorMessages.DELETING_ROOT_FOLDER_IS_FORBIDDEN)
        await self._client.request("DELETE", self._client.drive(f"/items/{folder_id}"))
        logger.info(f"폴더 삭제: {folder_id}")

    async def search_folders(self, folder_name: str) -> List[FolderItem]:
        """이름에 folder_name이 포함된 폴더 검색 (대소문자 무시)"""
        self._ensure_initialized()
        endpoint = self._client.drive(
            "/list/items?$select=id&$expand=driveItem($select=id,name,parentReference,folder)"
        )
        query = GraphDeltaQuery(self._client)
        result = await query.fetch_all(
            endpoint,
            lambda raw: parse_folder_item(raw.get("driveItem") or {}),
            extra_headers={"Prefer": "HonorNonIndexedQueriesWarningMayFailRandomly"},
        )

        needle = folder_name.lower()
        return [folder for folder in result.items if needle in folder.name.lower()]

    # ========================================================================
    # 연결 확인
    # ========================================================================

    async def validate_connection(self) -> Dict[str, Any]:
        """드라이브 조회로 연결 확인"""
        self._ensure_initialized()
        try:
            await self._client.ping()
        except OneDriveError as e:
            logger.warning(f"연결 확인 실패: {e.message}")
            return {"is_valid": False, "message": "Ping failed"}
        return {"is_valid": True, "message": "Success"}
