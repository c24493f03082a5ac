"""
Webhook Events
bridge 서비스가 전달한 웹훅 본문(알림 당시 deltaToken)으로 변경분 계산

일치 항목이 없으면 preflight 응답 (호스트에 이벤트를 발생시키지 않음).
새 token 커밋은 SubscriptionManager의 compare-and-store가 담당.
"""

import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from .onedrive_errors import OneDriveApplicationError
from .onedrive_types import CycleResult, FolderInput, WebhookPayload, WebhookResponse, build_folder_filter
from .subscription_manager import SubscriptionManager

logger = logging.getLogger(__name__)


def parse_webhook_payload(body: Union[WebhookPayload, Dict[str, Any]]) -> WebhookPayload:
    """
    웹훅 본문 검증

    Raises:
        OneDriveApplicationError: deltaToken이 없거나 비어있는 경우
    """
    if isinstance(body, WebhookPayload):
        return body
    try:
        return WebhookPayload.model_validate(body)
    except ValidationError as e:
        raise OneDriveApplicationError("Webhook payload must contain a non-empty deltaToken.", 400) from e


def _to_response(cycle: CycleResult, key: str) -> WebhookResponse:
    if not cycle.matched:
        return WebhookResponse(status_code=200, preflight=True)
    return WebhookResponse(
        status_code=200,
        result={key: [item.to_dict() for item in cycle.items]},
    )


class WebhookEvents:
    """파일/폴더 변경 웹훅"""

    def __init__(self, manager: SubscriptionManager):
        self.manager = manager

    async def on_files_updated_or_created(
        self,
        body: Union[WebhookPayload, Dict[str, Any]],
        folder: Optional[FolderInput] = None,
    ) -> WebhookResponse:
        """파일 생성/수정 웹훅 (직속 부모 폴더 필터만 지원)"""
        payload = parse_webhook_payload(body)
        cycle = await self.manager.handle_file_delivery(payload, build_folder_filter(folder))
        logger.info(f"파일 웹훅 처리: 일치 {len(cycle.items)}개, token 커밋 {cycle.committed}")
        return _to_response(cycle, "files")

    async def on_folders_updated_or_created(
        self,
        body: Union[WebhookPayload, Dict[str, Any]],
        folder: Optional[FolderInput] = None,
    ) -> WebhookResponse:
        """폴더 생성/수정 웹훅"""
        payload = parse_webhook_payload(body)
        cycle = await self.manager.handle_folder_delivery(payload, build_folder_filter(folder))
        logger.info(f"폴더 웹훅 처리: 일치 {len(cycle.items)}개, token 커밋 {cycle.committed}")
        return _to_response(cycle, "folders")
