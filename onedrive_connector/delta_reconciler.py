"""
Delta Reconciler - "지난번 이후 무엇이 바뀌었나" 한 주기 처리

상태:
    - 저장된 token 없음: 전체 delta 순회로 현재 token만 확보 (결과 보고 없음)
    - 저장된 token 있음: token 이후 변경분 조회 -> 필터 -> 새 token과 함께 반환

폴링 / 웹훅 진입점이 동일하게 사용. 차이는 token 출처와 저장 방식뿐.
"""

import logging
from typing import List, Optional

from .graph_delta_query import GraphDeltaQuery
from .graph_onedrive_client import GraphOneDriveClient
from .onedrive_errors import OneDriveError
from .onedrive_types import (
    CycleResult,
    FileItem,
    FolderFilter,
    FolderItem,
    parse_drive_item,
    parse_folder_item,
)

logger = logging.getLogger(__name__)


class DeltaReconciler:
    """delta 피드 기반 변경 확인"""

    def __init__(self, client: GraphOneDriveClient, delta_query: Optional[GraphDeltaQuery] = None):
        self.client = client
        self.delta_query = delta_query or GraphDeltaQuery(client)

    async def capture_baseline(self) -> str:
        """
        전체 delta 순회로 현재 token 확보

        Returns:
            현재 시점 token
        """
        result = await self.delta_query.get_changed_items(None, parser=lambda raw: None)
        logger.info("delta 기준 token 확보 완료")
        return result.delta_token

    async def run_file_cycle(
        self,
        stored_token: Optional[str],
        folder_filter: Optional[FolderFilter] = None,
    ) -> CycleResult:
        """
        파일 변경 확인 주기

        Args:
            stored_token: 이전 주기 token (없으면 기준 token만 확보)
            folder_filter: 폴더 필터

        Returns:
            CycleResult (새 token은 변경이 없어도 항상 포함)
        """
        if not stored_token:
            return CycleResult(new_token=await self.capture_baseline(), baseline=True)

        folder_filter = folder_filter or FolderFilter()
        result = await self.delta_query.get_changed_items(stored_token, parse_drive_item)
        files = [item for item in result.items if isinstance(item, FileItem)]

        if folder_filter.include_subfolders and folder_filter.parent_folder_id:
            folder_path = await self.resolve_folder_path(folder_filter.parent_folder_id)
            matched = filter_files_in_subtree(files, folder_path) if folder_path else []
        else:
            matched = filter_files_in_folder(files, folder_filter.parent_folder_id)

        logger.info(f"파일 변경 확인: 변경 {len(result.items)}개 중 {len(matched)}개 일치")
        return CycleResult(new_token=result.delta_token, items=matched)

    async def run_folder_cycle(
        self,
        stored_token: Optional[str],
        folder_filter: Optional[FolderFilter] = None,
    ) -> CycleResult:
        """
        폴더 변경 확인 주기 (하위 트리 모드 없음)

        Args:
            stored_token: 이전 주기 token
            folder_filter: 폴더 필터 (parent_folder_id만 사용)

        Returns:
            CycleResult
        """
        if not stored_token:
            return CycleResult(new_token=await self.capture_baseline(), baseline=True)

        folder_filter = folder_filter or FolderFilter()
        result = await self.delta_query.get_changed_items(stored_token, parse_drive_item)
        folders = [item for item in result.items if isinstance(item, FolderItem)]
        matched = filter_folders(folders, folder_filter.parent_folder_id)

        logger.info(f"폴더 변경 확인: 변경 {len(result.items)}개 중 {len(matched)}개 일치")
        return CycleResult(new_token=result.delta_token, items=matched)

    async def resolve_folder_path(self, folder_id: str) -> Optional[str]:
        """
        폴더 ID를 전체 경로로 변환

        조회 실패(삭제된 폴더 등)나 경로 계산 불가 시 None
        """
        try:
            data = await self.client.get_item(folder_id)
        except OneDriveError as e:
            logger.warning(f"폴더 경로 확인 실패 ({folder_id}): {e.message}")
            return None

        folder = parse_folder_item(data)
        return folder.full_path if folder else None


def filter_files_in_folder(files: List[FileItem], parent_folder_id: Optional[str]) -> List[FileItem]:
    """직속 부모 ID가 일치하는 파일 (ID가 없으면 전체)"""
    if not parent_folder_id:
        return list(files)
    return [f for f in files if f.parent.id == parent_folder_id]


def filter_files_in_subtree(files: List[FileItem], folder_path: str) -> List[FileItem]:
    """부모 경로가 폴더 경로이거나 그 하위 경로인 파일 (대소문자 무시)"""
    prefix = folder_path.rstrip("/").lower()
    return [
        f for f in files
        if f.parent.path is not None and _within(f.parent.path.rstrip("/").lower(), prefix)
    ]


def _within(path: str, prefix: str) -> bool:
    # "/Docs/20245"는 "/Docs/2024" 하위가 아님
    return path == prefix or path.startswith(prefix + "/")


def filter_folders(folders: List[FolderItem], parent_folder_id: Optional[str]) -> List[FolderItem]:
    """부모 ID가 있는 폴더 중 부모 ID가 일치하는 폴더"""
    return [
        f for f in folders
        if f.parent.id is not None
        and (parent_folder_id is None or f.parent.id == parent_folder_id)
    ]
