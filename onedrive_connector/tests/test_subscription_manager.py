"""
SubscriptionManager Tests
구독 생성/재사용/해제/갱신 + 웹훅 token compare-and-store
"""

import asyncio

import pytest

from conftest import NOTIFICATION_URL, delta_page, file_json, folder_json, subscription_json
from onedrive_connector.bridge_client import InMemoryFanOutRegistry
from onedrive_connector.onedrive_errors import OneDriveApplicationError
from onedrive_connector.onedrive_types import FolderFilter, WebhookPayload
from onedrive_connector.subscription_manager import SubscriptionManager
from onedrive_connector.token_store import InMemoryTokenStore

PAYLOAD_URL = "https://host.example.com/payload/1"


@pytest.fixture
def token_store():
    return InMemoryTokenStore()


@pytest.fixture
def fan_out():
    return InMemoryFanOutRegistry()


@pytest.fixture
def manager(graph_client, token_store, fan_out, settings):
    return SubscriptionManager(graph_client, token_store, fan_out, settings)


class TestFindTargetSubscription:
    """(리소스, 알림 URL) 일치 구독 조회"""

    @pytest.mark.asyncio
    async def test_matches_resource_and_notification_url(self, manager, fake_graph):
        fake_graph.add("GET", "/subscriptions", {"value": [
            subscription_json("other", notification_url="https://elsewhere.example.com/webhooks/onedrive"),
            subscription_json("sub-1"),
        ]})

        target = await manager.find_target_subscription()

        assert target.id == "sub-1"

    @pytest.mark.asyncio
    async def test_none_when_absent(self, manager, fake_graph):
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("x", resource="/me/drive/items/1")]})

        assert await manager.find_target_subscription() is None


class TestSubscribe:
    """구독 생성 / 재사용"""

    @pytest.mark.asyncio
    async def test_creates_subscription_and_baseline(self, manager, fake_graph, token_store, fan_out):
        fake_graph.add("GET", "/subscriptions", {"value": []})
        fake_graph.add("POST", "/subscriptions", subscription_json("sub-new"))
        fake_graph.add("GET", "/me/drive/root/delta", delta_page([file_json("a")], delta_token="T0"))

        subscription_id = await manager.subscribe(PAYLOAD_URL)

        assert subscription_id == "sub-new"
        assert await token_store.retrieve("sub-new") == "T0"
        assert fan_out.payload_urls("sub-new", "updated") == [PAYLOAD_URL]

        body = fake_graph.called("POST", "/subscriptions")[0]["json_data"]
        assert body["changeType"] == "updated"
        assert body["notificationUrl"] == NOTIFICATION_URL
        assert body["resource"] == "/me/drive/root"
        assert body["clientState"] == "test-client-state"
        assert body["expirationDateTime"]

    @pytest.mark.asyncio
    async def test_reuses_existing_subscription(self, manager, fake_graph, token_store, fan_out):
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})
        await token_store.store("sub-1", "T5")

        subscription_id = await manager.subscribe(PAYLOAD_URL)

        assert subscription_id == "sub-1"
        assert fake_graph.called("POST", "/subscriptions") == []
        assert await token_store.retrieve("sub-1") == "T5"
        assert fan_out.payload_urls("sub-1", "updated") == [PAYLOAD_URL]

    @pytest.mark.asyncio
    async def test_concurrent_subscribe_creates_one_subscription(
        self, graph_client, fake_graph, token_store, fan_out, settings
    ):
        """동시에 들어온 두 등록이 같은 구독을 공유"""
        fake_graph.add("GET", "/subscriptions", {"value": []}, {"value": [subscription_json("sub-A")]})
        fake_graph.add("POST", "/subscriptions", subscription_json("sub-A"), subscription_json("sub-B"))
        fake_graph.add("GET", "/me/drive/root/delta", delta_page([], delta_token="T0"))

        async def yielding_request(*args, **kwargs):
            await asyncio.sleep(0)
            return await fake_graph(*args, **kwargs)

        graph_client.request = yielding_request
        lock = asyncio.Lock()
        manager_a = SubscriptionManager(graph_client, token_store, fan_out, settings, lifecycle_lock=lock)
        manager_b = SubscriptionManager(graph_client, token_store, fan_out, settings, lifecycle_lock=lock)
        second_url = "https://host.example.com/payload/2"

        ids = await asyncio.gather(manager_a.subscribe(PAYLOAD_URL), manager_b.subscribe(second_url))

        assert ids == ["sub-A", "sub-A"]
        assert len(fake_graph.called("POST", "/subscriptions")) == 1
        assert fan_out.payload_urls("sub-A", "updated") == [PAYLOAD_URL, second_url]
        assert await token_store.retrieve("sub-A") == "T0"


class TestUnsubscribe:
    """등록 해제"""

    @pytest.mark.asyncio
    async def test_last_consumer_deletes_subscription(self, manager, fake_graph, token_store, fan_out):
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})
        fake_graph.add("DELETE", "/subscriptions/sub-1", {})
        await token_store.store("sub-1", "T0")
        await fan_out.subscribe(PAYLOAD_URL, "sub-1", "updated")

        remaining = await manager.unsubscribe(PAYLOAD_URL)

        assert remaining == 0
        assert await token_store.retrieve("sub-1") is None
        assert len(fake_graph.called("DELETE", "/subscriptions/sub-1")) == 1

    @pytest.mark.asyncio
    async def test_other_consumers_keep_subscription(self, manager, fake_graph, token_store, fan_out):
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})
        await token_store.store("sub-1", "T0")
        await fan_out.subscribe(PAYLOAD_URL, "sub-1", "updated")
        await fan_out.subscribe("https://host.example.com/payload/2", "sub-1", "updated")

        remaining = await manager.unsubscribe(PAYLOAD_URL)

        assert remaining == 1
        assert await token_store.retrieve("sub-1") == "T0"
        assert fake_graph.called("DELETE", "/subscriptions/sub-1") == []


class TestRenew:
    """만료 연장"""

    @pytest.mark.asyncio
    async def test_renews_owned_subscriptions(self, manager, fake_graph):
        fake_graph.add("GET", "/subscriptions", {"value": [
            subscription_json("sub-1"),
            subscription_json("foreign", notification_url="https://elsewhere.example.com/hook"),
        ]})
        fake_graph.add("PATCH", "/subscriptions/sub-1", {
            **subscription_json("sub-1"), "expirationDateTime": "2025-03-01T00:00:00Z",
        })

        renewed = await manager.renew()

        assert [s.id for s in renewed] == ["sub-1"]
        assert renewed[0].expiration_datetime == "2025-03-01T00:00:00Z"
        assert "expirationDateTime" in fake_graph.called("PATCH", "/subscriptions/sub-1")[0]["json_data"]
        assert fake_graph.called("PATCH", "/subscriptions/foreign") == []


class TestWebhookDelivery:
    """웹훅 전달 시 compare-and-store"""

    @pytest.mark.asyncio
    async def test_end_to_end_commit(self, manager, fake_graph, token_store):
        """tok-100 -> 파일 1개 일치 -> tok-101 저장"""
        await token_store.store("sub-1", "tok-100")
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})
        fake_graph.add("GET", "/me/drive/root/delta?token=tok-100", delta_page([
            file_json("file-1", parent_id="F1"),
            file_json("file-2", parent_id="F2"),
            folder_json("folder-1", "Sub", parent_id="R"),
        ], delta_token="tok-101"))

        result = await manager.handle_file_delivery(
            WebhookPayload(deltaToken="tok-100"), FolderFilter(parent_folder_id="F1")
        )

        assert [item.id for item in result.items] == ["file-1"]
        assert result.new_token == "tok-101"
        assert result.committed is True
        assert await token_store.retrieve("sub-1") == "tok-101"

    @pytest.mark.asyncio
    async def test_no_match_does_not_commit(self, manager, fake_graph, token_store):
        await token_store.store("sub-1", "T0")
        fake_graph.add("GET", "/me/drive/root/delta?token=T0", delta_page(
            [file_json("a", parent_id="F2")], delta_token="T1"
        ))

        result = await manager.handle_file_delivery(WebhookPayload(deltaToken="T0"), FolderFilter("F1"))

        assert result.matched is False
        assert result.committed is False
        assert await token_store.retrieve("sub-1") == "T0"
        assert fake_graph.called("GET", "/subscriptions") == []

    @pytest.mark.asyncio
    async def test_stale_delivery_is_silent_noop(self, manager, fake_graph, token_store):
        """저장 값이 이미 진행된 경우 오류 없이 커밋만 건너뜀"""
        await token_store.store("sub-1", "T1")
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})
        fake_graph.add("GET", "/me/drive/root/delta?token=T0", delta_page([file_json("a")], delta_token="T2"))

        result = await manager.handle_file_delivery(WebhookPayload(deltaToken="T0"))

        assert result.matched is True
        assert result.committed is False
        assert await token_store.retrieve("sub-1") == "T1"

    @pytest.mark.asyncio
    async def test_racing_deliveries_do_not_overwrite(self, graph_client, fake_graph, token_store, fan_out, settings):
        """T0에서 계산한 두 전달: A가 T1을 먼저 커밋하면 B의 T2는 거부"""
        await token_store.store("sub-1", "T0")
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})
        fake_graph.add("GET", "/me/drive/root/delta?token=T0",
                       delta_page([file_json("a")], delta_token="T1"),
                       delta_page([file_json("a"), file_json("b")], delta_token="T2"))

        manager_a = SubscriptionManager(graph_client, token_store, fan_out, settings)
        manager_b = SubscriptionManager(graph_client, token_store, fan_out, settings)

        result_a = await manager_a.handle_file_delivery(WebhookPayload(deltaToken="T0"))
        result_b = await manager_b.handle_file_delivery(WebhookPayload(deltaToken="T0"))

        assert result_a.committed is True
        assert result_b.committed is False
        assert await token_store.retrieve("sub-1") == "T1"

    @pytest.mark.asyncio
    async def test_concurrent_commits_single_winner(self, manager, fake_graph, token_store):
        await token_store.store("sub-1", "T0")
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})

        results = await asyncio.gather(
            manager.commit_token("T0", "T1"),
            manager.commit_token("T0", "T2"),
        )

        assert sorted(results) == [False, True]
        assert await token_store.retrieve("sub-1") in ("T1", "T2")

    @pytest.mark.asyncio
    async def test_folder_delivery(self, manager, fake_graph, token_store):
        await token_store.store("sub-1", "T0")
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})
        fake_graph.add("GET", "/me/drive/root/delta?token=T0", delta_page([
            folder_json("d1", "Docs", parent_id="R"), file_json("a", parent_id="R"),
        ], delta_token="T1"))

        result = await manager.handle_folder_delivery(WebhookPayload(deltaToken="T0"), FolderFilter("R"))

        assert [item.id for item in result.items] == ["d1"]
        assert await token_store.retrieve("sub-1") == "T1"

    @pytest.mark.asyncio
    async def test_commit_without_subscription_raises(self, manager, fake_graph):
        fake_graph.add("GET", "/subscriptions", {"value": []})

        with pytest.raises(OneDriveApplicationError, match="No active subscription"):
            await manager.commit_token("T0", "T1")
