"""
Bridge Service Client
외부 bridge 서비스 (key-value 저장소 + 웹훅 fan-out) HTTP 클라이언트

하나의 Graph 구독을 여러 웹훅 등록이 공유할 수 있도록
구독 ID 단위로 payload URL을 등록/해제함.
"""

import asyncio
import json
import logging
from typing import Dict, List, Optional

import aiohttp

from .config import Settings
from .onedrive_errors import OneDriveApplicationError, build_error

logger = logging.getLogger(__name__)


class BridgeService:
    """Bridge 서비스 클라이언트"""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings or Settings()
        self.base_url = str(self.settings.get("bridge_service_url")).rstrip("/")
        self.app_name = self.settings.get("app_name", "onedrive")
        self.timeout = self.settings.get("request_timeout", 60)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        """리소스 정리"""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.settings.get("bridge_token")
        if token:
            headers["Blackbird-Token"] = token
        return headers

    async def _request(self, method: str, path: str, json_data=None) -> str:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(
                method,
                url,
                headers=self._headers(),
                json=json_data,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                text = await response.text()
                if 200 <= response.status < 300:
                    return text
                logger.error(f"Bridge 요청 실패: {method} {path} -> {response.status}")
                raise build_error(response.status, response.reason, response.content_type, text)
        except aiohttp.ClientError as e:
            logger.error(f"Bridge 요청 오류: {method} {path} - {str(e)}")
            raise OneDriveApplicationError(f"Request to bridge service failed: {str(e)}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"Bridge 요청 시간 초과: {method} {path} ({self.timeout}s)")
            raise OneDriveApplicationError(
                f"Request to bridge service timed out after {self.timeout} seconds."
            ) from e

    # ========================================================================
    # key-value 저장소
    # ========================================================================

    async def store_value(self, key: str, value: str) -> None:
        await self._request("POST", f"/storage/{key}", value)

    async def retrieve_value(self, key: str) -> Optional[str]:
        """
        저장된 값 조회

        bridge는 JSON 문자열로 반환하므로 앞뒤 따옴표를 제거함
        """
        text = await self._request("GET", f"/storage/{key}")
        value = text.strip().strip('"')
        return value or None

    async def delete_value(self, key: str) -> None:
        await self._request("DELETE", f"/storage/{key}")

    # ========================================================================
    # 웹훅 fan-out
    # ========================================================================

    def _webhook_path(self, subscription_id: str, event: str) -> str:
        return f"/webhooks/{self.app_name}/{subscription_id}/{event}"

    async def subscribe(self, payload_url: str, subscription_id: str, event: str) -> None:
        await self._request("POST", self._webhook_path(subscription_id, event), {"url": payload_url})
        logger.info(f"웹훅 등록: {subscription_id}/{event}")

    async def unsubscribe(self, payload_url: str, subscription_id: str, event: str) -> int:
        """
        웹훅 등록 해제

        Returns:
            해당 구독에 남은 웹훅 수
        """
        path = self._webhook_path(subscription_id, event)
        await self._request("DELETE", path, {"url": payload_url})
        remaining = await self.list_webhooks(subscription_id, event)
        logger.info(f"웹훅 해제: {subscription_id}/{event}, 남은 웹훅 {len(remaining)}개")
        return len(remaining)

    async def list_webhooks(self, subscription_id: str, event: str) -> List[str]:
        text = await self._request("GET", self._webhook_path(subscription_id, event))
        if not text.strip():
            return []
        data = json.loads(text)
        if isinstance(data, dict):
            data = data.get("value") or []
        return [entry.get("url", "") if isinstance(entry, dict) else str(entry) for entry in data]


class InMemoryFanOutRegistry:
    """프로세스 내부 fan-out 레지스트리 (단일 인스턴스 실행 / 테스트용)"""

    def __init__(self):
        self._registrations: Dict[str, List[str]] = {}

    @staticmethod
    def _key(subscription_id: str, event: str) -> str:
        return f"{subscription_id}/{event}"

    async def subscribe(self, payload_url: str, subscription_id: str, event: str) -> None:
        urls = self._registrations.setdefault(self._key(subscription_id, event), [])
        if payload_url not in urls:
            urls.append(payload_url)

    async def unsubscribe(self, payload_url: str, subscription_id: str, event: str) -> int:
        key = self._key(subscription_id, event)
        urls = self._registrations.get(key, [])
        if payload_url in urls:
            urls.remove(payload_url)
        if not urls:
            self._registrations.pop(key, None)
        return len(urls)

    def payload_urls(self, subscription_id: str, event: str) -> List[str]:
        return list(self._registrations.get(self._key(subscription_id, event), []))


def create_fan_out(settings: Settings, bridge: Optional[BridgeService] = None):
    """설정에 맞는 fan-out 레지스트리 생성 (fan_out: memory / bridge)"""
    kind = settings.get("fan_out", "memory")
    if kind == "memory":
        return InMemoryFanOutRegistry()
    if kind == "bridge":
        return bridge or BridgeService(settings)
    raise ValueError(f"Unknown fan-out registry: {kind}")
