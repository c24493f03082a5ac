"""
OneDrive Graph API Client
Microsoft Graph API 호출 전송 계층

역할:
    - 호스트가 전달한 Bearer 토큰으로 인증된 요청 수행
    - 2xx 외 응답을 타입이 있는 예외로 변환 (onedrive_errors)
    - JSON 본문 역직렬화
    - 서버가 돌려준 절대 URL(@odata.nextLink 등)을 상대 엔드포인트로 변환
"""

import asyncio
import json
import logging
from typing import Optional, Dict, Any, Tuple
from urllib.parse import urlsplit

import aiohttp

from core.protocols import TokenProviderProtocol
from .config import Settings
from .onedrive_errors import (
    ErrorMessages,
    OneDriveApplicationError,
    OneDriveMisconfigurationError,
    build_error,
)

logger = logging.getLogger(__name__)


class StaticTokenProvider:
    """호스트 플랫폼이 넘겨준 Authorization 값을 그대로 제공"""

    def __init__(self, authorization: Optional[str]):
        """
        Args:
            authorization: "Bearer <token>" 또는 토큰 문자열
        """
        value = (authorization or "").strip()
        if value.lower().startswith("bearer "):
            value = value[len("bearer "):].strip()
        self._token = value or None

    async def get_access_token(self) -> Optional[str]:
        return self._token


class GraphOneDriveClient:
    """OneDrive Graph API 클라이언트"""

    GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

    def __init__(
        self,
        token_provider: TokenProviderProtocol,
        settings: Optional[Settings] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        클라이언트 초기화

        Args:
            token_provider: 토큰 제공자
            settings: 커넥터 설정 (없으면 기본값)
            session: 외부에서 관리하는 aiohttp 세션 (없으면 initialize()에서 생성)
        """
        self.token_provider = token_provider
        self.settings = settings or Settings()
        self.base_url = str(self.settings.get("graph_base_url", self.GRAPH_BASE_URL)).rstrip("/")
        self.drive_root = self.settings.get("drive_root", "/me/drive")
        self.timeout = self.settings.get("request_timeout", 60)
        self._session = session
        self._owns_session = session is None
        self._initialized = session is not None

    async def initialize(self) -> bool:
        """클라이언트 초기화"""
        if self._initialized:
            return True

        self._session = aiohttp.ClientSession()
        self._initialized = True
        logger.info("GraphOneDriveClient initialized")
        return True

    async def close(self):
        """리소스 정리"""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None
        self._initialized = False

    # ========================================================================
    # URL 처리
    # ========================================================================

    def drive(self, endpoint: str = "") -> str:
        """드라이브 기준 엔드포인트 (예: /items/{id} -> /me/drive/items/{id})"""
        return f"{self.drive_root}{endpoint}"

    def to_relative_endpoint(self, url: str) -> str:
        """
        서버가 반환한 절대 URL을 base URL 기준 상대 엔드포인트로 변환

        scheme/host와 API 버전 경로(/v1.0)를 제거하고 path + query만 남김.
        다른 호스트의 URL(업로드 세션 등)은 그대로 반환.

        Args:
            url: @odata.nextLink 같은 절대 URL

        Returns:
            상대 엔드포인트 또는 원본 URL
        """
        parts = urlsplit(url)
        if not parts.scheme:
            return url

        base = urlsplit(self.base_url)
        if parts.netloc.lower() != base.netloc.lower():
            return url

        path = parts.path
        base_path = base.path.rstrip("/")
        if base_path and (path == base_path or path.startswith(base_path + "/")):
            path = path[len(base_path):]

        return f"{path}?{parts.query}" if parts.query else path

    def _build_url(self, endpoint: str) -> str:
        if urlsplit(endpoint).scheme:
            return endpoint
        return f"{self.base_url}{endpoint}"

    async def _auth_headers(self) -> Dict[str, str]:
        access_token = await self.token_provider.get_access_token()
        if not access_token:
            raise OneDriveMisconfigurationError(ErrorMessages.UNAUTHORIZED, 401)
        return {"Authorization": f"Bearer {access_token}"}

    # ========================================================================
    # 요청 메서드
    # ========================================================================

    async def _send(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Dict[str, Any]] = None,
        data: Optional[bytes] = None,
        content_type: Optional[str] = "application/json",
        extra_headers: Optional[Dict[str, str]] = None,
        authorize: bool = True,
    ) -> Tuple[int, Dict[str, str], Optional[str], bytes]:
        if not self._initialized:
            await self.initialize()

        headers: Dict[str, str] = {}
        if authorize:
            headers.update(await self._auth_headers())
        if content_type:
            headers["Content-Type"] = content_type
        if extra_headers:
            headers.update(extra_headers)

        url = self._build_url(endpoint)

        try:
            async with self._session.request(
                method,
                url,
                headers=headers,
                json=json_data,
                data=data,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                body = await response.read()
                if 200 <= response.status < 300:
                    return response.status, dict(response.headers), response.content_type, body

                text = body.decode("utf-8", errors="replace")
                logger.error(f"API 요청 실패: {method} {endpoint} -> {response.status}")
                raise build_error(response.status, response.reason, response.content_type, text)
        except aiohttp.ClientError as e:
            logger.error(f"API 요청 오류: {method} {endpoint} - {str(e)}")
            raise OneDriveApplicationError(f"Request to Microsoft Graph failed: {str(e)}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"API 요청 시간 초과: {method} {endpoint} ({self.timeout}s)")
            raise OneDriveApplicationError(
                f"Request to Microsoft Graph timed out after {self.timeout} seconds."
            ) from e

    async def request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Dict[str, Any]] = None,
        data: Optional[bytes] = None,
        content_type: Optional[str] = "application/json",
        extra_headers: Optional[Dict[str, str]] = None,
        authorize: bool = True,
    ) -> Dict[str, Any]:
        """
        Graph API 요청 수행 후 JSON 본문 반환

        Args:
            method: HTTP 메서드 (GET, POST, PUT, PATCH, DELETE)
            endpoint: 상대 엔드포인트 또는 절대 URL
            json_data: JSON 데이터
            data: 바이너리 데이터
            content_type: Content-Type 헤더
            extra_headers: 추가 헤더
            authorize: Authorization 헤더 포함 여부 (업로드 세션 URL은 False)

        Returns:
            역직렬화된 응답 (본문이 없으면 빈 dict)

        Raises:
            OneDriveError: 2xx 외 응답 또는 네트워크 오류
        """
        status, _, _, body = await self._send(
            method, endpoint, json_data, data, content_type, extra_headers, authorize
        )
        if status == 204 or not body.strip():
            return {}

        try:
            return json.loads(body)
        except ValueError as e:
            raise OneDriveApplicationError(
                f"HTTP {status}. Response body is not valid JSON.", status
            ) from e

    async def request_raw(self, method: str, endpoint: str) -> Tuple[bytes, Dict[str, str], Optional[str]]:
        """
        응답 본문을 바이트 그대로 반환 (파일 다운로드용)

        Returns:
            (본문, 응답 헤더, Content-Type)
        """
        _, headers, content_type, body = await self._send(method, endpoint, content_type=None)
        return body, headers, content_type

    # ========================================================================
    # 공용 조회 메서드
    # ========================================================================

    async def get_item(self, item_id: str) -> Dict[str, Any]:
        """아이템 메타데이터 조회 (ID)"""
        return await self.request("GET", self.drive(f"/items/{item_id}"))

    async def get_item_by_path(self, path: str) -> Dict[str, Any]:
        """아이템 메타데이터 조회 (루트 기준 경로)"""
        return await self.request("GET", self.drive(f"/root:/{path.strip('/')}"))

    async def ping(self) -> Dict[str, Any]:
        """드라이브 정보 조회 (연결 확인용)"""
        return await self.request("GET", self.drive())
