"""
OneDrive 커넥터 테스트 공통 Fixtures

Graph 호출은 FakeGraph 라우터로 대체:
    (메서드, 상대 엔드포인트) -> 응답 dict 또는 예외
"""

import os
import sys
from typing import Any, Dict, List, Optional, Tuple

import pytest

# 프로젝트 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from onedrive_connector.config import Settings
from onedrive_connector.graph_onedrive_client import GraphOneDriveClient, StaticTokenProvider

GRAPH = "https://graph.microsoft.com/v1.0"
BRIDGE_URL = "https://bridge.example.com"
NOTIFICATION_URL = f"{BRIDGE_URL}/webhooks/onedrive"


class FakeGraph:
    """GraphOneDriveClient.request 대체 라우터"""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, method: str, endpoint: str, *responses: Any) -> "FakeGraph":
        """응답 등록 (여러 개면 호출 순서대로, 마지막 응답은 반복 사용)"""
        self.routes.setdefault((method, endpoint), []).extend(responses)
        return self

    async def __call__(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Dict[str, Any]] = None,
        data: Optional[bytes] = None,
        content_type: Optional[str] = "application/json",
        extra_headers: Optional[Dict[str, str]] = None,
        authorize: bool = True,
    ) -> Dict[str, Any]:
        self.calls.append({
            "method": method,
            "endpoint": endpoint,
            "json_data": json_data,
            "data": data,
            "content_type": content_type,
            "extra_headers": extra_headers,
            "authorize": authorize,
        })
        responses = self.routes.get((method, endpoint))
        if not responses:
            raise AssertionError(f"Unexpected Graph request: {method} {endpoint}")

        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def called(self, method: str, endpoint: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["endpoint"] == endpoint]


# ============================================================================
# Graph 응답 헬퍼
# ============================================================================

def file_json(
    item_id: str,
    parent_id: str = "root-id",
    parent_path: Optional[str] = "/drive/root:",
    name: Optional[str] = None,
    modified: str = "2025-01-09T10:30:00Z",
    mime_type: str = "text/plain",
) -> Dict[str, Any]:
    """Graph driveItem (파일)"""
    parent = {"id": parent_id, "driveId": "drive-1"}
    if parent_path is not None:
        parent["path"] = parent_path
    return {
        "id": item_id,
        "name": name or f"{item_id}.txt",
        "size": 128,
        "file": {"mimeType": mime_type},
        "parentReference": parent,
        "lastModifiedDateTime": modified,
        "createdDateTime": modified,
        "webUrl": f"https://onedrive.live.com/{item_id}",
    }


def folder_json(
    item_id: str,
    name: str,
    parent_id: Optional[str] = "root-id",
    parent_path: Optional[str] = "/drive/root:",
    child_count: int = 0,
) -> Dict[str, Any]:
    """Graph driveItem (폴더)"""
    parent: Dict[str, Any] = {"driveId": "drive-1"}
    if parent_id is not None:
        parent["id"] = parent_id
    if parent_path is not None:
        parent["path"] = parent_path
    return {
        "id": item_id,
        "name": name,
        "folder": {"childCount": child_count},
        "parentReference": parent,
        "lastModifiedDateTime": "2025-01-09T10:30:00Z",
    }


def delta_page(items: List[Dict[str, Any]], next_token: Optional[str] = None,
               delta_token: Optional[str] = None) -> Dict[str, Any]:
    """delta 피드 한 페이지"""
    page: Dict[str, Any] = {"value": items}
    if next_token:
        page["@odata.nextLink"] = f"{GRAPH}/me/drive/root/delta?token={next_token}"
    if delta_token:
        page["@odata.deltaLink"] = f"{GRAPH}/me/drive/root/delta?token={delta_token}"
    return page


def subscription_json(subscription_id: str = "sub-1",
                      notification_url: str = NOTIFICATION_URL,
                      resource: str = "me/drive/root") -> Dict[str, Any]:
    return {
        "id": subscription_id,
        "resource": resource,
        "notificationUrl": notification_url,
        "changeType": "updated",
        "expirationDateTime": "2025-02-10T00:00:00Z",
    }


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings():
    """테스트용 설정"""
    return Settings(config={
        "bridge_service_url": BRIDGE_URL,
        "client_state": "test-client-state",
        "token_store": "memory",
        "fan_out": "memory",
        "access_token": None,
    })


@pytest.fixture
def fake_graph():
    return FakeGraph()


@pytest.fixture
def graph_client(settings, fake_graph):
    """request가 FakeGraph로 대체된 클라이언트"""
    client = GraphOneDriveClient(StaticTokenProvider("Bearer test-token"), settings)
    client.request = fake_graph
    return client
