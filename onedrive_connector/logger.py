"""
커넥터 로깅 설정
Settings(log_level, log_file) 기준으로 패키지 로거에 핸들러 구성
"""

import logging
import re
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from .config import Settings

LOG_FORMAT = '[%(asctime)s] %(levelname)-8s %(name)s - %(message)s'

# 핸들러를 붙일 패키지 로거
CONNECTOR_LOGGERS = ('onedrive_connector', 'core')

# DEBUG가 아니면 WARNING 이상만 남길 외부 로거
NOISY_LOGGERS = ('uvicorn.access', 'aiohttp.access', 'aiohttp.client')

_BEARER_PATTERN = re.compile(r'(Bearer\s+)[A-Za-z0-9\-._~+/]+=*', re.IGNORECASE)


class BearerTokenFilter(logging.Filter):
    """로그 메시지의 Bearer 토큰 마스킹"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _BEARER_PATTERN.sub(r'\1***', message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def _build_handlers(log_file: Optional[str]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    formatter = logging.Formatter(LOG_FORMAT)
    token_filter = BearerTokenFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(token_filter)
    return handlers


def setup_logger(
    settings: Optional[Settings] = None,
    logger_names: Iterable[str] = CONNECTOR_LOGGERS,
) -> List[logging.Logger]:
    """
    커넥터 로거 구성

    기존 핸들러는 닫고 교체하므로 여러 번 호출해도 중복 출력 없음.

    Args:
        settings: log_level / log_file을 읽을 설정
        logger_names: 핸들러를 붙일 로거 이름

    Returns:
        구성된 로거 목록
    """
    settings = settings or Settings()
    level_name = str(settings.get('log_level', 'INFO')).upper()
    level = getattr(logging, level_name, logging.INFO)

    handlers = _build_handlers(settings.get('log_file'))

    configured = []
    for name in logger_names:
        logger = logging.getLogger(name)
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(level)
        logger.propagate = False
        for handler in handlers:
            logger.addHandler(handler)
        configured.append(logger)

    noisy_level = logging.DEBUG if level == logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    return configured
