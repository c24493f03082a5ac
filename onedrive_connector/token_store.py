"""
Delta Token Store
구독 ID를 키로 delta token을 보관하는 저장소

- InMemoryTokenStore: 단일 프로세스용 (키 단위 asyncio.Lock)
- SqliteTokenStore: 파일 공유 시 여러 프로세스에서도 안전한 조건부 UPDATE
- BridgeTokenStore: 외부 bridge 서비스 key-value 저장소

compare_and_store는 "현재 값이 expected와 같을 때만 저장"을 하나의 원자적
단위로 수행함. 같은 키를 다루는 다른 reconciler와 경합해도 갱신이 유실되지 않음.
"""

import asyncio
import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .bridge_client import BridgeService
from .config import Settings

logger = logging.getLogger(__name__)


class TokenStore(ABC):
    """
    토큰 저장소 추상 인터페이스

    compare_and_store 기본 구현은 키 단위 프로세스 내부 lock 안에서
    retrieve -> 비교 -> store 를 수행함
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _forget_lock(self, key: str):
        # 삭제된 키의 lock 정리 (사용 중이면 유지)
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    @abstractmethod
    async def store(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def retrieve(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    async def compare_and_store(self, key: str, expected: Optional[str], value: str) -> bool:
        """
        현재 값이 expected와 같을 때만 value 저장

        Args:
            key: 저장 키 (구독 ID)
            expected: 기대하는 현재 값 (None이면 키가 없어야 함)
            value: 새 값

        Returns:
            저장 여부
        """
        async with self._lock_for(key):
            current = await self.retrieve(key)
            if current != expected:
                logger.info(f"토큰 갱신 건너뜀 ({key}): 다른 처리에서 이미 갱신됨")
                return False
            await self.store(key, value)
            logger.debug(f"토큰 갱신 완료 ({key})")
            return True


class InMemoryTokenStore(TokenStore):
    """프로세스 메모리 저장소"""

    def __init__(self):
        super().__init__()
        self._values: Dict[str, str] = {}

    async def store(self, key: str, value: str) -> None:
        self._values[key] = value

    async def retrieve(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)
        self._forget_lock(key)


class SqliteTokenStore(TokenStore):
    """
    SQLite 파일 저장소

    sqlite3 호출은 asyncio.to_thread에서 실행 (호출마다 연결을 열고 닫음)
    """

    def __init__(self, db_path: str = "database/delta_tokens.db"):
        """
        Args:
            db_path: 데이터베이스 파일 경로
        """
        super().__init__()
        self.db_path = db_path
        self.ensure_tables()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def ensure_tables(self):
        """토큰 테이블 생성"""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS delta_tokens (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()
        finally:
            conn.close()

    # ========================================================================
    # 동기 DB 작업
    # ========================================================================

    def _store_sync(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO delta_tokens (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
            conn.commit()
        finally:
            conn.close()

    def _retrieve_sync(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM delta_tokens WHERE key = ?", (key,)).fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def _delete_sync(self, key: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM delta_tokens WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def _compare_and_store_sync(self, key: str, expected: Optional[str], value: str) -> bool:
        conn = self._connect()
        try:
            if expected is None:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO delta_tokens (key, value) VALUES (?, ?)",
                    (key, value),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE delta_tokens SET value = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE key = ? AND value = ?
                    """,
                    (value, key, expected),
                )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    # ========================================================================
    # TokenStore
    # ========================================================================

    async def store(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._store_sync, key, value)

    async def retrieve(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._retrieve_sync, key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)
        self._forget_lock(key)

    async def compare_and_store(self, key: str, expected: Optional[str], value: str) -> bool:
        """조건부 UPDATE / INSERT 한 문장으로 비교와 저장을 수행"""
        stored = await asyncio.to_thread(self._compare_and_store_sync, key, expected, value)
        if not stored:
            logger.info(f"토큰 갱신 건너뜀 ({key}): 다른 처리에서 이미 갱신됨")
        return stored


class BridgeTokenStore(TokenStore):
    """bridge 서비스 key-value 저장소"""

    def __init__(self, bridge: BridgeService):
        super().__init__()
        self.bridge = bridge

    async def store(self, key: str, value: str) -> None:
        await self.bridge.store_value(key, value)

    async def retrieve(self, key: str) -> Optional[str]:
        return await self.bridge.retrieve_value(key)

    async def delete(self, key: str) -> None:
        await self.bridge.delete_value(key)
        self._forget_lock(key)


def create_token_store(settings: Settings, bridge: Optional[BridgeService] = None) -> TokenStore:
    """
    설정에 맞는 토큰 저장소 생성

    Args:
        settings: 커넥터 설정 (token_store: memory / sqlite / bridge)
        bridge: bridge 저장소용 클라이언트 (없으면 생성)

    Returns:
        TokenStore
    """
    kind = settings.get("token_store", "memory")
    if kind == "memory":
        return InMemoryTokenStore()
    if kind == "sqlite":
        return SqliteTokenStore(settings.get("token_db_path"))
    if kind == "bridge":
        return BridgeTokenStore(bridge or BridgeService(settings))
    raise ValueError(f"Unknown token store: {kind}")
