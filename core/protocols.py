"""
Core Protocols - 모듈 간 의존성 추상화를 위한 Protocol 정의

현재 정의:
    - TokenProviderProtocol: 호스트가 전달한 Bearer 토큰 제공
    - TokenStoreProtocol: delta 토큰을 보관하는 외부 key-value 저장소
    - WebhookFanOutProtocol: 하나의 Graph 구독을 여러 웹훅 등록에 공유

사용 예시:
    # 테스트용 Mock 주입
    store = InMemoryTokenStore()
    manager = SubscriptionManager(client, store, fan_out, settings)
"""

from typing import Protocol, Optional, runtime_checkable


@runtime_checkable
class TokenProviderProtocol(Protocol):
    """
    토큰 제공자 프로토콜

    이 커넥터는 OAuth 흐름을 수행하지 않음. 호스트 플랫폼이 넘겨준
    Authorization 값을 그대로 돌려주는 구현이면 충분함.
    """

    async def get_access_token(self) -> Optional[str]:
        """
        Graph 호출에 사용할 액세스 토큰 반환

        Returns:
            액세스 토큰 또는 None
        """
        ...


@runtime_checkable
class TokenStoreProtocol(Protocol):
    """
    delta 토큰 저장소 프로토콜

    구독 ID를 키로 사용. compare_and_store는 같은 키에 대해 원자적으로
    수행되어야 함.
    """

    async def store(self, key: str, value: str) -> None:
        ...

    async def retrieve(self, key: str) -> Optional[str]:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def compare_and_store(self, key: str, expected: Optional[str], value: str) -> bool:
        """
        현재 값이 expected와 같을 때만 value로 교체

        Returns:
            교체했으면 True, 다른 쪽이 먼저 갱신했으면 False
        """
        ...


@runtime_checkable
class WebhookFanOutProtocol(Protocol):
    """웹훅 fan-out 레지스트리 프로토콜"""

    async def subscribe(self, payload_url: str, subscription_id: str, event: str) -> None:
        ...

    async def unsubscribe(self, payload_url: str, subscription_id: str, event: str) -> int:
        """
        등록 해제

        Returns:
            해당 구독에 남아있는 웹훅 수
        """
        ...
