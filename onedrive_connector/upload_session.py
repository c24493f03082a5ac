"""
Resumable Upload
업로드 세션(createUploadSession)을 이용한 대용량 파일 업로드

서버가 응답마다 돌려주는 nextExpectedRanges를 따라 청크를 전송하고,
nextExpectedRanges가 없는 응답(최종 driveItem)에서 종료함.
"""

import logging
from typing import Iterator, Optional, Tuple
from urllib.parse import quote

from .config import Settings
from .graph_onedrive_client import GraphOneDriveClient
from .onedrive_errors import OneDriveApplicationError
from .onedrive_types import ConflictBehavior, FileItem, UploadSession, parse_file_item

logger = logging.getLogger(__name__)


def parse_range_start(expected_range: str) -> int:
    """nextExpectedRanges 항목("12345-" 또는 "0-999")의 시작 바이트"""
    try:
        return int(expected_range.split("-", 1)[0])
    except ValueError as e:
        raise OneDriveApplicationError(
            f"Upload session returned an invalid expected range: '{expected_range}'."
        ) from e


def iter_upload_ranges(
    state: UploadSession,
    total_size: int,
    chunk_size: int,
    max_iterations: int,
) -> Iterator[Tuple[int, int]]:
    """
    다음에 보낼 청크 범위 (start, end) 생성 - end는 포함하지 않음

    호출자는 청크 전송 후 state.next_expected_ranges를 서버 응답으로 갱신해야 함.
    서버가 더 이상 범위를 요구하지 않으면 종료.

    Args:
        state: 업로드 세션 상태
        total_size: 전체 파일 크기
        chunk_size: 청크 크기
        max_iterations: 최대 청크 전송 횟수

    Raises:
        OneDriveApplicationError: 범위가 파일 크기를 벗어나거나 최대 횟수를 넘긴 경우
    """
    for _ in range(max_iterations):
        if not state.next_expected_ranges:
            return

        start = parse_range_start(state.next_expected_ranges[0])
        if start >= total_size:
            raise OneDriveApplicationError(
                f"Upload session expects bytes from {start}, but the file has only {total_size} bytes."
            )
        yield start, min(start + chunk_size, total_size)

    raise OneDriveApplicationError(
        f"Upload did not complete after {max_iterations} chunks."
    )


class ResumableUpload:
    """업로드 세션 기반 파일 업로드"""

    def __init__(self, client: GraphOneDriveClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or client.settings
        self.chunk_size = self.settings.get("upload_chunk_size", 3932160)
        self.max_iterations = self.settings.get("max_upload_iterations", 10000)

    async def create_session(
        self,
        parent_folder_id: str,
        filename: str,
        conflict_behavior: ConflictBehavior = ConflictBehavior.REPLACE,
    ) -> UploadSession:
        """업로드 세션 생성"""
        endpoint = self.client.drive(
            f"/items/{parent_folder_id}:/{quote(filename)}:/createUploadSession"
        )
        data = await self.client.request(
            "POST",
            endpoint,
            json_data={
                "deferCommit": False,
                "item": {
                    "@microsoft.graph.conflictBehavior": ConflictBehavior(conflict_behavior).value,
                    "name": filename,
                },
            },
        )
        session = UploadSession.from_dict(data)
        if not session.upload_url:
            raise OneDriveApplicationError("Microsoft Graph did not return an upload URL.")
        if session.next_expected_ranges is None:
            session.next_expected_ranges = ["0-"]
        return session

    async def upload(
        self,
        parent_folder_id: str,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
        conflict_behavior: ConflictBehavior = ConflictBehavior.REPLACE,
    ) -> FileItem:
        """
        파일 업로드

        Args:
            parent_folder_id: 업로드할 폴더 ID
            filename: 파일명
            content: 파일 내용
            content_type: 청크 Content-Type
            conflict_behavior: 같은 이름 파일이 있을 때 동작

        Returns:
            업로드된 FileItem
        """
        state = await self.create_session(parent_folder_id, filename, conflict_behavior)
        total_size = len(content)
        final = None
        chunks = 0

        for start, end in iter_upload_ranges(state, total_size, self.chunk_size, self.max_iterations):
            # 업로드 URL은 사전 인증된 절대 URL이므로 Authorization 헤더를 붙이지 않음
            response = await self.client.request(
                "PUT",
                state.upload_url,
                data=content[start:end],
                content_type=content_type or "application/octet-stream",
                extra_headers={"Content-Range": f"bytes {start}-{end - 1}/{total_size}"},
                authorize=False,
            )
            chunks += 1

            next_ranges = response.get("nextExpectedRanges")
            if next_ranges:
                state.next_expected_ranges = next_ranges
                logger.debug(f"청크 {chunks} 완료 ({end}/{total_size} bytes)")
            else:
                state.next_expected_ranges = None
                final = response

        item = parse_file_item(final or {})
        if item is None:
            raise OneDriveApplicationError(f"Upload of '{filename}' finished without file metadata.")

        logger.info(f"업로드 완료: {filename} ({total_size:,} bytes, {chunks} 청크)")
        return item
