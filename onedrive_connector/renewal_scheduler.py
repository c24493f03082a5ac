"""
Subscription Renewal Scheduler

구독은 만료되면 알림이 조용히 끊기므로, 만료 전에 주기적으로 연장함.
한 번의 갱신이 실패해도 다음 주기는 계속 실행됨.
"""

import asyncio
import logging
from typing import Optional

from .subscription_manager import SubscriptionManager

logger = logging.getLogger(__name__)


class RenewalScheduler:
    """시작 직후 그리고 renewal_period_minutes 간격으로 SubscriptionManager.renew() 실행"""

    def __init__(self, manager: SubscriptionManager, period_minutes: Optional[float] = None):
        self.manager = manager
        if period_minutes is None:
            period_minutes = manager.settings.get("renewal_period_minutes", 39995)
        self.period_seconds = period_minutes * 60
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """백그라운드 작업 시작 (실행 중인 이벤트 루프 필요)"""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"구독 갱신 스케줄러 시작 ({self.period_seconds / 60:.0f}분 간격)")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("구독 갱신 스케줄러 중지")

    async def run_once(self) -> bool:
        """
        갱신 1회 실행

        Returns:
            성공 여부
        """
        try:
            renewed = await self.manager.renew()
            logger.info(f"구독 갱신 완료: {len(renewed)}개")
            return True
        except Exception as e:
            logger.error(f"구독 갱신 실패: {str(e)}", exc_info=True)
            return False

    async def _run(self):
        # 첫 갱신은 대기 없이 실행 (구독 만료 시각은 프로세스 시작 시각과 무관)
        while True:
            await self.run_once()
            await asyncio.sleep(self.period_seconds)
