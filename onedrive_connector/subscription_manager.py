"""
Subscription Manager
Graph 변경 알림 구독 관리 + 웹훅 전달 시 delta token 조정

(감시 리소스, 알림 URL) 쌍마다 구독은 최대 하나만 유지하고,
여러 웹훅 등록은 fan-out 레지스트리를 통해 같은 구독을 공유함.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from core.protocols import TokenStoreProtocol, WebhookFanOutProtocol
from .config import Settings
from .delta_reconciler import DeltaReconciler
from .graph_delta_query import GraphDeltaQuery
from .graph_onedrive_client import GraphOneDriveClient
from .onedrive_errors import OneDriveApplicationError
from .onedrive_types import CycleResult, FolderFilter, SubscriptionRecord, WebhookPayload

logger = logging.getLogger(__name__)


def _normalize_resource(resource: Optional[str]) -> str:
    # Graph는 "/me/drive/root"를 "me/drive/root"로 돌려주기도 함
    return (resource or "").strip("/").lower()


class SubscriptionManager:
    """구독 생성 / 재사용 / 갱신 / 삭제 및 웹훅 token 커밋"""

    def __init__(
        self,
        client: GraphOneDriveClient,
        token_store: TokenStoreProtocol,
        fan_out: WebhookFanOutProtocol,
        settings: Optional[Settings] = None,
        reconciler: Optional[DeltaReconciler] = None,
        lifecycle_lock: Optional[asyncio.Lock] = None,
    ):
        """
        Args:
            client: Graph 클라이언트
            token_store: 구독 ID -> delta token 저장소
            fan_out: 웹훅 fan-out 레지스트리
            settings: 커넥터 설정
            reconciler: delta 조정기 (없으면 client로 생성)
            lifecycle_lock: 구독 생성/삭제 직렬화 lock (요청마다 manager를 만들 때 공유)
        """
        self.client = client
        self.token_store = token_store
        self.fan_out = fan_out
        self.settings = settings or client.settings
        self.reconciler = reconciler or DeltaReconciler(client)
        self.lifecycle_lock = lifecycle_lock or asyncio.Lock()

        self.resource = self.settings.get("subscription_resource", "/me/drive/root")
        self.change_type = self.settings.get("subscription_change_type", "updated")
        self.notification_url = self.settings.notification_url
        self.expiration_minutes = self.settings.get("subscription_expiration_minutes", 40000)

    def _expiration(self) -> str:
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=self.expiration_minutes)
        return expires_at.isoformat()

    # ========================================================================
    # 구독 조회
    # ========================================================================

    async def list_subscriptions(self) -> List[SubscriptionRecord]:
        result = await GraphDeltaQuery(self.client).fetch_all("/subscriptions", SubscriptionRecord.from_dict)
        return result.items

    async def find_target_subscription(self) -> Optional[SubscriptionRecord]:
        """
        (리소스, 알림 URL)이 일치하는 구독 조회

        Returns:
            SubscriptionRecord 또는 None
        """
        resource = _normalize_resource(self.resource)
        for subscription in await self.list_subscriptions():
            if (
                _normalize_resource(subscription.resource) == resource
                and subscription.notification_url == self.notification_url
            ):
                return subscription
        return None

    # ========================================================================
    # 구독 수명 주기
    # ========================================================================

    async def subscribe(self, payload_url: str) -> str:
        """
        웹훅 등록

        일치하는 구독이 없으면 새로 만들고 현재 delta token을 기준값으로 저장.
        있으면 기존 구독 ID를 재사용.

        Args:
            payload_url: 호스트가 변경 이벤트를 받을 URL

        Returns:
            구독 ID
        """
        # 조회와 생성 사이에 다른 subscribe가 끼어들면 구독이 중복 생성됨
        async with self.lifecycle_lock:
            target = await self.find_target_subscription()

            if target is None:
                created = await self.client.request(
                    "POST",
                    "/subscriptions",
                    json_data={
                        "changeType": self.change_type,
                        "notificationUrl": self.notification_url,
                        "resource": self.resource,
                        "expirationDateTime": self._expiration(),
                        "clientState": self.settings.get("client_state", ""),
                    },
                )
                subscription = SubscriptionRecord.from_dict(created)
                if not subscription.id:
                    raise OneDriveApplicationError("Microsoft Graph did not return a subscription id.")
                subscription_id = subscription.id
                logger.info(f"구독 생성: {subscription_id}")

                baseline = await self.reconciler.capture_baseline()
                await self.token_store.store(subscription_id, baseline)
            else:
                subscription_id = target.id
                logger.info(f"기존 구독 재사용: {subscription_id}")

            await self.fan_out.subscribe(payload_url, subscription_id, self.change_type)
            return subscription_id

    async def unsubscribe(self, payload_url: str) -> int:
        """
        웹훅 등록 해제

        남은 등록이 없으면 저장된 token과 Graph 구독을 함께 삭제

        Returns:
            구독에 남은 웹훅 수
        """
        async with self.lifecycle_lock:
            target = await self.find_target_subscription()
            if target is None:
                logger.warning(f"해제할 구독이 없음: {self.resource} -> {self.notification_url}")
                return 0

            remaining = await self.fan_out.unsubscribe(payload_url, target.id, self.change_type)
            if remaining == 0:
                await self.token_store.delete(target.id)
                await self.client.request("DELETE", f"/subscriptions/{target.id}")
                logger.info(f"구독 삭제: {target.id}")
            return remaining

    async def renew(self) -> List[SubscriptionRecord]:
        """
        이 커넥터가 소유한 모든 구독의 만료 시각 연장

        Returns:
            갱신된 구독 목록
        """
        resource = _normalize_resource(self.resource)
        renewed = []
        for subscription in await self.list_subscriptions():
            if (
                _normalize_resource(subscription.resource) != resource
                or subscription.notification_url != self.notification_url
            ):
                continue

            updated = await self.client.request(
                "PATCH",
                f"/subscriptions/{subscription.id}",
                json_data={"expirationDateTime": self._expiration()},
            )
            record = SubscriptionRecord.from_dict(updated) if updated else subscription
            renewed.append(record)
            logger.info(f"구독 갱신: {subscription.id} -> {record.expiration_datetime}")

        if not renewed:
            logger.warning("갱신할 구독이 없음")
        return renewed

    # ========================================================================
    # 웹훅 전달 처리
    # ========================================================================

    async def handle_file_delivery(
        self,
        payload: WebhookPayload,
        folder_filter: Optional[FolderFilter] = None,
    ) -> CycleResult:
        """
        파일 변경 웹훅 처리

        알림 당시 token으로 변경분을 계산하고, 일치 항목이 있을 때만
        compare-and-store로 새 token을 커밋
        """
        cycle = await self.reconciler.run_file_cycle(payload.delta_token, folder_filter)
        if cycle.matched:
            cycle.committed = await self.commit_token(payload.delta_token, cycle.new_token)
        return cycle

    async def handle_folder_delivery(
        self,
        payload: WebhookPayload,
        folder_filter: Optional[FolderFilter] = None,
    ) -> CycleResult:
        """폴더 변경 웹훅 처리"""
        cycle = await self.reconciler.run_folder_cycle(payload.delta_token, folder_filter)
        if cycle.matched:
            cycle.committed = await self.commit_token(payload.delta_token, cycle.new_token)
        return cycle

    async def commit_token(self, old_token: str, new_token: str) -> bool:
        """
        저장소의 현재 값이 old_token일 때만 new_token 저장

        불일치는 다른 전달이 이미 token을 진행시킨 경우이므로 오류가 아님

        Raises:
            OneDriveApplicationError: 대상 구독이 없는 경우
        """
        target = await self.find_target_subscription()
        if target is None:
            raise OneDriveApplicationError(
                "No active subscription found for this connector; re-create the webhook."
            )
        return await self.token_store.compare_and_store(target.id, old_token, new_token)
