"""
Polling Events
호스트가 주기적으로 호출하는 변경 확인 이벤트

호스트는 응답의 memory(delta token)를 보관했다가 다음 호출에 그대로 넘김.
첫 호출(memory 없음)은 기준 token만 확보하고 결과를 보고하지 않음.
"""

import logging
from typing import Optional

from .delta_reconciler import DeltaReconciler
from .graph_onedrive_client import GraphOneDriveClient
from .onedrive_types import (
    CycleResult,
    FolderInput,
    IncludeSubfoldersInput,
    PollingEventResponse,
    PollingMemory,
    build_folder_filter,
)

logger = logging.getLogger(__name__)


def _to_response(cycle: CycleResult, key: str) -> PollingEventResponse:
    result = None
    if cycle.matched:
        result = {key: [item.to_dict() for item in cycle.items]}
    return PollingEventResponse(
        fly_bird=cycle.matched,
        memory=PollingMemory(delta_token=cycle.new_token),
        result=result,
    )


class PollingEvents:
    """파일/폴더 변경 폴링"""

    def __init__(self, client: GraphOneDriveClient, reconciler: Optional[DeltaReconciler] = None):
        self.client = client
        self.reconciler = reconciler or DeltaReconciler(client)

    async def on_files_created_or_updated(
        self,
        memory: Optional[PollingMemory] = None,
        folder: Optional[FolderInput] = None,
        include_subfolders: Optional[IncludeSubfoldersInput] = None,
    ) -> PollingEventResponse:
        """
        파일 생성/수정 확인

        Args:
            memory: 이전 호출에서 받은 상태 (없으면 기준 token 확보)
            folder: 폴더 필터
            include_subfolders: 하위 폴더 포함 여부

        Returns:
            PollingEventResponse (memory는 일치 여부와 관계없이 항상 새 token)
        """
        folder_filter = build_folder_filter(folder, include_subfolders)
        cycle = await self.reconciler.run_file_cycle(
            memory.delta_token if memory else None, folder_filter
        )
        return _to_response(cycle, "files")

    async def on_folders_created_or_updated(
        self,
        memory: Optional[PollingMemory] = None,
        folder: Optional[FolderInput] = None,
    ) -> PollingEventResponse:
        """폴더 생성/수정 확인"""
        cycle = await self.reconciler.run_folder_cycle(
            memory.delta_token if memory else None, build_folder_filter(folder)
        )
        return _to_response(cycle, "folders")
