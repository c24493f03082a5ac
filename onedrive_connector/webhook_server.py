"""
FastAPI Webhook Server
Graph 알림 수신 + 호스트용 웹훅 이벤트 / 구독 관리 엔드포인트

- POST /webhooks/{app_name}: Graph 구독 검증(validationToken) 및 알림 수신
- POST /events/files, /events/folders: bridge가 전달한 deltaToken으로 변경분 계산
- POST /subscriptions, DELETE /subscriptions, POST /subscriptions/renew
- GET /health
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from .bridge_client import BridgeService, create_fan_out
from .config import Settings
from .graph_onedrive_client import GraphOneDriveClient, StaticTokenProvider
from .logger import setup_logger
from .onedrive_errors import OneDriveError, OneDriveMisconfigurationError, error_to_dict
from .onedrive_types import FolderInput, WebhookResponse
from .renewal_scheduler import RenewalScheduler
from .subscription_manager import SubscriptionManager
from .token_store import create_token_store
from .webhook_events import WebhookEvents

logger = logging.getLogger(__name__)


def _error_response(error: OneDriveError) -> JSONResponse:
    if isinstance(error, OneDriveMisconfigurationError):
        status_code = 401
    elif error.status_code and 400 <= error.status_code < 500:
        status_code = error.status_code
    else:
        status_code = 502
    return JSONResponse(status_code=status_code, content=error_to_dict(error))


def _webhook_content(response: WebhookResponse) -> Dict[str, Any]:
    return {"preflight": response.preflight, "result": response.result}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    웹훅 서버 생성

    토큰 저장소와 fan-out 레지스트리는 앱 전체에서 공유함.
    (요청마다 새로 만들면 키 단위 lock이 공유되지 않음)
    """
    settings = settings or Settings()
    app = FastAPI(title="OneDrive Connector Webhooks")

    bridge = BridgeService(settings) if "bridge" in (settings.get("token_store"), settings.get("fan_out")) else None
    app.state.settings = settings
    app.state.token_store = create_token_store(settings, bridge)
    app.state.fan_out = create_fan_out(settings, bridge)
    app.state.subscription_lock = asyncio.Lock()
    app.state.scheduler = None

    def build_manager(authorization: Optional[str]) -> SubscriptionManager:
        client = GraphOneDriveClient(StaticTokenProvider(authorization), settings)
        return SubscriptionManager(
            client, app.state.token_store, app.state.fan_out, settings,
            lifecycle_lock=app.state.subscription_lock,
        )

    @app.on_event("startup")
    async def startup_event():
        access_token = settings.get("access_token")
        if access_token:
            app.state.scheduler = RenewalScheduler(build_manager(access_token))
            app.state.scheduler.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        scheduler = app.state.scheduler
        if scheduler:
            await scheduler.stop()
            await scheduler.manager.client.close()
        if bridge:
            await bridge.close()

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "app": settings.get("app_name")}

    # ========================================================================
    # Graph 알림 수신
    # ========================================================================

    @app.post(f"/webhooks/{settings.get('app_name', 'onedrive')}")
    async def receive_notification(request: Request):
        # 구독 생성 시 Graph가 보내는 검증 요청: 토큰을 그대로 text/plain으로 반환
        validation_token = request.query_params.get("validationToken")
        if validation_token is not None:
            return PlainTextResponse(validation_token)

        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON body"})

        notifications = (body.get("value") or []) if isinstance(body, dict) else []
        expected_state = settings.get("client_state")
        for notification in notifications:
            if expected_state and notification.get("clientState") != expected_state:
                logger.warning(f"clientState 불일치 알림 거부: {notification.get('subscriptionId')}")
                return JSONResponse(status_code=403, content={"success": False, "error": "Invalid clientState"})

        logger.info(f"Graph 알림 수신: {len(notifications)}건")
        return JSONResponse(status_code=202, content={"accepted": len(notifications)})

    # ========================================================================
    # 호스트 이벤트
    # ========================================================================

    async def _run_event(request: Request, handler_name: str):
        try:
            body = await request.json()
        except ValueError:
            body = {}

        folder = FolderInput(parent_folder_id=request.query_params.get("parentFolderId"))
        manager = build_manager(request.headers.get("Authorization"))
        try:
            handler = getattr(WebhookEvents(manager), handler_name)
            response = await handler(body, folder)
        except OneDriveError as e:
            logger.error(f"웹훅 이벤트 처리 실패: {e.message}")
            return _error_response(e)
        finally:
            await manager.client.close()

        return JSONResponse(status_code=response.status_code, content=_webhook_content(response))

    @app.post("/events/files")
    async def files_event(request: Request):
        return await _run_event(request, "on_files_updated_or_created")

    @app.post("/events/folders")
    async def folders_event(request: Request):
        return await _run_event(request, "on_folders_updated_or_created")

    # ========================================================================
    # 구독 관리
    # ========================================================================

    @app.post("/subscriptions")
    async def subscribe(request: Request):
        try:
            body = await request.json()
        except ValueError:
            body = {}
        payload_url = body.get("payloadUrl") if isinstance(body, dict) else None
        if not payload_url:
            return JSONResponse(status_code=400, content={"success": False, "error": "payloadUrl is required"})

        manager = build_manager(request.headers.get("Authorization"))
        try:
            subscription_id = await manager.subscribe(payload_url)
        except OneDriveError as e:
            return _error_response(e)
        finally:
            await manager.client.close()
        return {"success": True, "subscription_id": subscription_id}

    @app.delete("/subscriptions")
    async def unsubscribe(request: Request, payload_url: str = Query(..., alias="payloadUrl")):
        manager = build_manager(request.headers.get("Authorization"))
        try:
            remaining = await manager.unsubscribe(payload_url)
        except OneDriveError as e:
            return _error_response(e)
        finally:
            await manager.client.close()
        return {"success": True, "remaining": remaining}

    @app.post("/subscriptions/renew")
    async def renew(request: Request):
        manager = build_manager(request.headers.get("Authorization"))
        try:
            renewed = await manager.renew()
        except OneDriveError as e:
            return _error_response(e)
        finally:
            await manager.client.close()
        return {"success": True, "renewed": [s.id for s in renewed]}

    return app


def main():
    """웹훅 서버 실행"""
    import uvicorn

    settings = Settings()
    validation = settings.validate()
    setup_logger(settings)
    for warning in validation["warnings"]:
        logger.warning(warning)
    if not validation["valid"]:
        for error in validation["errors"]:
            logger.error(error)
        raise SystemExit(1)

    uvicorn.run(create_app(settings), host=settings.get("webhook_host"), port=int(settings.get("webhook_port")))


if __name__ == "__main__":
    main()
