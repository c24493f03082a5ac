"""
Data Source Handlers
호스트 UI의 파일/폴더 선택 목록 (ID -> 루트 기준 표시 경로)
"""

import logging
from typing import Dict, List, Optional

from .graph_delta_query import GraphDeltaQuery
from .graph_onedrive_client import GraphOneDriveClient
from .onedrive_types import DriveItem, FileItem, FolderItem, parse_drive_item, parse_folder_item

logger = logging.getLogger(__name__)

MAX_DISPLAY_LENGTH = 40


def relative_to_root(path: Optional[str]) -> str:
    """
    Graph 경로("/drive/root:/Docs/2024")를 루트 기준 경로("Docs/2024")로 변환

    루트 자체("/drive/root:")는 빈 문자열
    """
    if not path or ":" not in path:
        return ""
    return path.split(":", 1)[1].strip("/")


def shorten_path(path: str) -> str:
    """40자를 넘고 4단계 이상인 경로는 "첫/.../끝에서 두번째/마지막"으로 축약"""
    if len(path) <= MAX_DISPLAY_LENGTH:
        return path
    parts = path.split("/")
    if len(parts) <= 3:
        return path
    return "/".join([parts[0], "...", parts[-2], parts[-1]])


class _DriveItemDataSourceHandler:
    """전체 드라이브 검색 결과를 표시 경로 목록으로 변환하는 공통 로직"""

    item_class = None

    def __init__(self, client: GraphOneDriveClient):
        self.client = client
        self._parent_paths: Dict[str, str] = {}

    async def get_data(self, search: Optional[str] = None) -> Dict[str, str]:
        """
        Args:
            search: 표시 경로에 포함되어야 하는 문자열 (대소문자 무시)

        Returns:
            {아이템 ID: 표시 경로}
        """
        needle = (search or "").lower()
        data: Dict[str, str] = {}

        for item in await self._list_items():
            path = await self.item_path(item)
            if needle not in path.lower():
                continue
            data[item.id] = shorten_path(path)
        return data

    async def _list_items(self) -> List[DriveItem]:
        result = await GraphDeltaQuery(self.client).fetch_all(
            self.client.drive("/root/search(q='.')"), parse_drive_item
        )
        return [item for item in result.items if isinstance(item, self.item_class)]

    async def item_path(self, item: DriveItem) -> str:
        """루트 기준 아이템 경로"""
        if item.parent.path is not None:
            parent_path = relative_to_root(item.parent.path)
        elif item.parent.id:
            parent_path = await self._parent_path(item.parent.id)
        else:
            parent_path = ""
        return f"{parent_path}/{item.name}" if parent_path else item.name

    async def _parent_path(self, parent_id: str) -> str:
        # 검색 결과에는 parentReference.path가 없을 수 있어 부모 폴더를 조회함
        if parent_id not in self._parent_paths:
            parent = parse_folder_item(await self.client.get_item(parent_id))
            if parent is None or parent.parent.path is None:
                self._parent_paths[parent_id] = ""
            else:
                self._parent_paths[parent_id] = relative_to_root(parent.full_path)
        return self._parent_paths[parent_id]


class FileDataSourceHandler(_DriveItemDataSourceHandler):
    """파일 선택 목록"""

    item_class = FileItem


class FolderDataSourceHandler(_DriveItemDataSourceHandler):
    """폴더 선택 목록"""

    item_class = FolderItem


class ConflictBehaviorDataSourceHandler:
    """업로드 충돌 시 동작 선택 목록"""

    def get_data(self) -> Dict[str, str]:
        return {
            "fail": "Fail uploading",
            "replace": "Replace file",
            "rename": "Rename file",
        }
