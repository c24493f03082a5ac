"""
Graph Delta Query - 페이지 컬렉션 / delta 피드 순회

역할:
    - @odata.nextLink를 따라 모든 페이지를 순차적으로 조회
    - 마지막 페이지의 @odata.deltaLink에서 token 파라미터 추출
    - 실패 시 전체 순회 중단 (부분 결과는 반환하지 않음)
"""

import logging
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs, quote, urlsplit

from .graph_onedrive_client import GraphOneDriveClient
from .onedrive_errors import OneDriveApplicationError
from .onedrive_types import PagedResult

logger = logging.getLogger(__name__)

NEXT_LINK = "@odata.nextLink"
DELTA_LINK = "@odata.deltaLink"

ItemParser = Callable[[Dict[str, Any]], Optional[Any]]


def extract_delta_token(delta_link: str) -> Optional[str]:
    """
    deltaLink URL의 query string에서 token 값 추출

    Args:
        delta_link: @odata.deltaLink 값

    Returns:
        token 값 또는 None
    """
    query = urlsplit(delta_link).query
    values = parse_qs(query).get("token")
    return values[0] if values else None


class GraphDeltaQuery:
    """
    페이지 컬렉션 조회 클래스

    페이지는 이전 응답의 링크에 의존하므로 항상 순차적으로 조회함
    """

    def __init__(self, client: GraphOneDriveClient):
        self.client = client

    async def fetch_all(
        self,
        endpoint: str,
        parser: Optional[ItemParser] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> PagedResult:
        """
        시작 엔드포인트부터 마지막 페이지까지 조회

        Args:
            endpoint: 시작 상대 엔드포인트
            parser: 아이템 변환 함수 (None 반환 시 제외). 없으면 원본 dict 유지
            extra_headers: 모든 페이지 요청에 붙일 추가 헤더

        Returns:
            PagedResult (전체 아이템, deltaLink가 있었다면 token)

        Raises:
            OneDriveError: 어느 페이지든 실패하면 즉시 전파
        """
        items: List[Any] = []
        next_endpoint: Optional[str] = endpoint
        delta_token: Optional[str] = None
        page_count = 0

        while next_endpoint:
            result = await self.client.request("GET", next_endpoint, extra_headers=extra_headers)
            page_count += 1

            for raw in result.get("value") or []:
                item = parser(raw) if parser else raw
                if item is not None:
                    items.append(item)

            next_link = result.get(NEXT_LINK)
            delta_link = result.get(DELTA_LINK)

            if next_link:
                next_endpoint = self.client.to_relative_endpoint(next_link)
                logger.debug(f"페이징 진행 중... 현재 {len(items)}개 ({page_count} 페이지)")
                continue

            if delta_link:
                delta_token = extract_delta_token(delta_link)
                if not delta_token:
                    raise OneDriveApplicationError(
                        "Delta link returned by Microsoft Graph does not contain a token."
                    )
            next_endpoint = None

        logger.debug(f"페이지 순회 완료: {page_count} 페이지, {len(items)}개")
        return PagedResult(items=items, delta_token=delta_token)

    async def get_changed_items(
        self,
        delta_token: Optional[str] = None,
        parser: Optional[ItemParser] = None,
    ) -> PagedResult:
        """
        delta 피드 조회

        Args:
            delta_token: 이전 token (없으면 처음부터 전체 조회)
            parser: 아이템 변환 함수

        Returns:
            PagedResult (변경 아이템, 새 token)

        Raises:
            OneDriveApplicationError: 피드가 deltaLink 없이 끝난 경우
        """
        endpoint = self.client.drive("/root/delta")
        if delta_token:
            endpoint = f"{endpoint}?token={quote(delta_token, safe='')}"

        result = await self.fetch_all(endpoint, parser)
        if not result.delta_token:
            raise OneDriveApplicationError(
                "Delta feed ended without a delta link; the change token could not be advanced."
            )
        return result
