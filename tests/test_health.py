import asyncio
import threading
import time

from voice_minutes.services.health import run_health_checks, runtime_info


def test_checks_run_concurrently_and_join():
    barrier = threading.Barrier(2, timeout=5)

    def waits_for_peer():
        # 並列に実行されていなければ Barrier がタイムアウトする
        barrier.wait()
        return True

    result = asyncio.run(run_health_checks({"openai": waits_for_peer, "database": waits_for_peer}))
    assert result == {"status": "healthy", "services": {"openai": "connected", "database": "connected"}}


def test_failures_and_unconfigured_checks():
    def boom():
        raise RuntimeError("boom")

    def slow_false():
        time.sleep(0.05)
        return False

    result = asyncio.run(run_health_checks({"openai": boom, "database": slow_false, "wiki": None}))
    assert result["status"] == "unhealthy"
    assert result["services"] == {"openai": "error", "database": "disconnected", "wiki": "not_configured"}


def test_runtime_info():
    info = runtime_info("test")
    assert info["environment"] == "test"
    assert info["uptime_seconds"] >= 0
    assert info["python_version"]
