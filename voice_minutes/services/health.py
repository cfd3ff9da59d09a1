"""
外部サービスの接続確認
"""
import asyncio
import logging
import platform
import sys
import time
from typing import Callable, Optional

logger = logging.getLogger("voice_minutes.health")

HealthCheck = Callable[[], bool]

_STARTED_AT = time.monotonic()


async def run_health_checks(checks: dict[str, Optional[HealthCheck]]) -> dict:
    """
    読み取り専用のチェックを並列に実行し、すべて終わってから結果をまとめる
    None のチェックは not_configured として扱う
    """
    names = [name for name, fn in checks.items() if fn is not None]
    results = await asyncio.gather(
        *(asyncio.to_thread(checks[name]) for name in names), return_exceptions=True
    )

    services: dict[str, str] = {name: "not_configured" for name, fn in checks.items() if fn is None}
    for name, result in zip(names, results):
        if isinstance(result, BaseException):
            logger.error("Health check %s raised: %s", name, result)
            services[name] = "error"
        else:
            services[name] = "connected" if result else "disconnected"

    healthy = all(state in ("connected", "not_configured") for state in services.values())
    return {
        "status": "healthy" if healthy else "unhealthy",
        "services": services,
    }


def uptime_seconds() -> float:
    return round(time.monotonic() - _STARTED_AT, 1)


def runtime_info(environment: str) -> dict:
    return {
        "python_version": sys.version.split()[0],
        "platform": platform.platform(),
        "uptime_seconds": uptime_seconds(),
        "environment": environment,
    }
