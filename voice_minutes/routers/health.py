from datetime import datetime

from fastapi import APIRouter

from voice_minutes.services.health import run_health_checks, runtime_info
from voice_minutes.utils.responses import fail, ok

ENDPOINTS = {
    "audio": "/api/audio",
    "meeting": "/api/meeting",
    "document": "/api/document",
    "health": "/health",
}


def create_health_router(services) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    async def health():
        result = await run_health_checks(services.health_checks())
        data = {**result, "timestamp": datetime.now().isoformat()}
        if result["status"] != "healthy":
            return fail("一部のサービスに接続できません", error="unhealthy", status_code=503, data=data)
        return ok(data)

    @router.get("/health/detailed")
    async def health_detailed():
        result = await run_health_checks(services.health_checks())
        settings = services.settings
        return ok({
            **result,
            "timestamp": datetime.now().isoformat(),
            "runtime": runtime_info(settings.app_env),
            "config": {
                "whisper_model": settings.whisper_model,
                "structure_model": settings.structure_model,
                "narrative_mode": settings.minutes_narrative_mode,
                "upload_max_size": settings.upload_max_size,
                "max_files_per_request": settings.max_files_per_request,
            },
            "endpoints": ENDPOINTS,
        })

    return router
