"""
Core Module - 협력 객체 Protocol 정의

onedrive_connector가 토큰 제공자, 토큰 저장소, fan-out 레지스트리의
구체 구현을 직접 의존하지 않도록 추상화.
"""

from .protocols import TokenProviderProtocol, TokenStoreProtocol, WebhookFanOutProtocol

__all__ = ['TokenProviderProtocol', 'TokenStoreProtocol', 'WebhookFanOutProtocol']
