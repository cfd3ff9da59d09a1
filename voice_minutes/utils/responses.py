"""
レスポンスエンベロープ {success, message, data, error} の組み立て
"""
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def ok(data: Any = None, message: Optional[str] = None, status_code: int = 200, **extra) -> JSONResponse:
    body: dict = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def fail(message: str, error: Any = None, status_code: int = 500, stack: Optional[str] = None, **extra) -> JSONResponse:
    body: dict = {"success": False, "message": message}
    if error is not None:
        body["error"] = error
    if stack:
        body["stack"] = stack
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))
