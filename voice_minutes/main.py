"""
FastAPIアプリケーション
音声アップロード → 文字起こし → 構造化 → 議事録ドキュメント生成 → 保存 → 公開
"""
import logging
import traceback
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from voice_minutes.config import Settings, get_settings
from voice_minutes.context import Services, build_services
from voice_minutes.errors import MinutesError
from voice_minutes.logging_setup import configure_logging
from voice_minutes.routers.audio import create_audio_router
from voice_minutes.routers.document import create_document_router
from voice_minutes.routers.health import ENDPOINTS, create_health_router
from voice_minutes.routers.meeting import create_meeting_router
from voice_minutes.services.health import run_health_checks
from voice_minutes.utils.responses import fail, ok

logger = logging.getLogger("voice_minutes.main")

APP_VERSION = "1.0.0"


def _stack(exc: Exception, settings: Settings) -> Optional[str]:
    if settings.is_production:
        return None
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def _install_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(MinutesError)
    async def minutes_error_handler(request: Request, exc: MinutesError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
        else:
            logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
        return fail(
            exc.user_message,
            error={"type": type(exc).__name__, "message": exc.message, "detail": exc.detail},
            status_code=exc.status_code,
            stack=_stack(exc, settings),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = "要求されたリソースが見つかりません" if exc.status_code == 404 else str(exc.detail)
        return fail(message, error=str(exc.detail), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e.get("loc", [])), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
        return fail("入力データの検証に失敗しました", error=errors, status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("%s %s unexpected error", request.method, request.url.path)
        return fail("内部サーバーエラーが発生しました", error=str(exc), status_code=500, stack=_stack(exc, settings))


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    アプリケーションを組み立てる

    Args:
        settings: 実行時設定（省略時は環境変数から読み込む）
        services: 組み立て済みのサービス群（テストではフェイクを渡す）
    """
    if services is not None:
        settings = services.settings
    else:
        settings = settings or get_settings()
        settings.validate_for_server()
        configure_logging(settings.log_level, settings.logs_dir)
        services = build_services(settings)

    app = FastAPI(title="Voice Minutes API", version=APP_VERSION)
    app.state.services = services
    _install_exception_handlers(app, settings)

    app.include_router(create_health_router(services))
    app.include_router(create_audio_router(services))
    app.include_router(create_meeting_router(services))
    app.include_router(create_document_router(services))

    app.mount("/uploads", StaticFiles(directory=services.intake.upload_dir), name="uploads")
    app.mount("/summaries", StaticFiles(directory=services.renderer.output_dir), name="summaries")

    @app.on_event("startup")
    async def startup_event():
        """起動時に外部サービスへの接続を並列で確認する（失敗しても起動は続ける）"""
        result = await run_health_checks(services.health_checks())
        for name, state in result["services"].items():
            logger.info("[Startup] %s: %s", name, state)
        if result["status"] != "healthy":
            logger.warning("[Startup] Some services are unavailable")

    @app.get("/")
    async def root():
        return ok({
            "name": "Voice Minutes API",
            "version": APP_VERSION,
            "environment": settings.app_env,
            "timestamp": datetime.now().isoformat(),
            "endpoints": ENDPOINTS,
        }, message="音声議事録自動化APIサーバー")

    return app


def __getattr__(name: str):
    # `uvicorn voice_minutes.main:app` 用。import時にはアプリを組み立てない
    if name == "app":
        global app
        app = create_app()
        return app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
