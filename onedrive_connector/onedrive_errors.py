"""
OneDrive Errors
Graph API 오류 응답을 사용자용 예외로 변환

역할:
    - 예외 계층 정의 (애플리케이션 오류 / 설정 오류)
    - HTTP 상태 코드와 응답 본문에서 메시지 추출
    - HTML 오류 페이지, 빈 본문, 잘못된 JSON 처리
"""

import json
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup


class ErrorMessages:
    """사용자에게 노출되는 오류 메시지"""

    UNAUTHORIZED = "Unauthorized. Please re-connect your Microsoft account."
    FILE_OR_FOLDER_WITH_ID_NOT_FOUND = "File or folder with specified ID was not found"
    FILE_OR_FOLDER_NOT_FOUND_AT_PATH = "File or folder was not found at the provided path"
    FOLDER_WITH_NAME_ALREADY_EXISTS = "Folder with specified name already exists"
    INVALID_FOLDER_NAME = "Folder name is invalid"
    DELETING_ROOT_FOLDER_IS_FORBIDDEN = "Deleting root folder is forbidden"
    PATH_POINTS_TO_FOLDER = "Provided path '{path}' points to folder, not file."
    ID_POINTS_TO_FOLDER = "Provided ID points to folder, not file."
    ID_POINTS_TO_FILE = "Provided ID points to file, not folder."
    NO_RESPONSE = "No response received from server."


class OneDriveError(Exception):
    """OneDrive 커넥터 기본 예외"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class OneDriveApplicationError(OneDriveError):
    """요청 파라미터 또는 원격 상태로 인한 오류 (사용자에게 그대로 노출)"""


class OneDriveNotFoundError(OneDriveApplicationError):
    """아이템/폴더를 찾을 수 없음"""


class OneDriveConflictError(OneDriveApplicationError):
    """이름 충돌 등 409 응답"""


class OneDriveMisconfigurationError(OneDriveError):
    """인증 정보 문제 - 요청 파라미터가 아닌 연결 설정 오류"""


def extract_html_error_message(html: str) -> str:
    """
    HTML 오류 페이지에서 title/body 텍스트 추출

    Args:
        html: HTML 본문

    Returns:
        "<title>:\\nError Description: <body>" 형식의 메시지
    """
    if not html or not html.strip():
        return "N/A"

    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text().strip() if soup.title else ""
    body = soup.body.get_text().strip() if soup.body else ""

    title = title or "No Title"
    body = body or "No Description"

    return f"{title}:\nError Description: {body}"


def _parse_graph_error_message(content: str) -> Optional[str]:
    """Graph 오류 JSON ({"error": {"message": ...}})에서 메시지 추출"""
    data = json.loads(content)
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if not isinstance(error, dict):
        return None
    message = error.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return None


def build_error(
    status_code: int,
    reason: Optional[str],
    content_type: Optional[str],
    content: Optional[str],
    error_message: Optional[str] = None,
) -> OneDriveError:
    """
    실패한 HTTP 응답을 예외로 변환 (역직렬화 예외는 절대 던지지 않음)

    Args:
        status_code: HTTP 상태 코드
        reason: HTTP reason phrase
        content_type: 응답 Content-Type
        content: 응답 본문 텍스트
        error_message: 전송 계층 오류 설명 (있으면)

    Returns:
        OneDriveError 하위 예외 인스턴스
    """
    content = content or ""
    reason = reason or ""
    prefix = f"HTTP {status_code} {reason}".rstrip()

    # 401은 본문 형태(HTML, 빈 본문)와 무관하게 인증 설정 오류
    if status_code == 401:
        return OneDriveMisconfigurationError(ErrorMessages.UNAUTHORIZED, status_code)

    is_html = "text/html" in (content_type or "").lower() or content.lstrip().startswith("<")
    if is_html:
        return OneDriveApplicationError(
            f"{prefix}: {extract_html_error_message(content)}", status_code
        )

    if not content.strip():
        extra = f" Details: {error_message}" if error_message and error_message.strip() else ""
        return OneDriveApplicationError(
            f"{prefix}. Response body is empty.{extra}", status_code
        )

    try:
        message = _parse_graph_error_message(content)
    except ValueError:
        message = None
    else:
        if status_code == 404:
            return OneDriveNotFoundError(
                f"{message or 'Resource not found.'} Please check the inputs for this action.",
                status_code,
            )

        if status_code == 409 and message:
            return OneDriveConflictError(message, status_code)

        if message:
            return OneDriveApplicationError(message, status_code)

    detail = content.strip() or (error_message or "").strip() or "Unknown error."
    return OneDriveApplicationError(f"{prefix}. {detail}", status_code)


def error_to_dict(error: OneDriveError) -> Dict[str, Any]:
    """예외를 호스트 응답용 dict로 변환"""
    return {
        "success": False,
        "error": error.message,
        "status_code": error.status_code,
        "misconfiguration": isinstance(error, OneDriveMisconfigurationError),
    }
