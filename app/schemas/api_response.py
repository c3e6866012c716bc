"""
app.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~

REST 接口的统一应答体。

实时通道走 ``app.schemas.ws_events`` 的事件格式，不使用这里的包装；
HTTP 侧（在线列表、房间成员、违禁词管理、健康检查以外的所有接口）都返回:

.. code-block:: json

    {"code": 200, "data": {...}, "msg": "success"}
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """统一 JSON 应答体。

    Attributes:
        code: 业务状态码，与 HTTP 状态码保持一致，200 表示成功。
        data: 业务数据，失败时为 ``None``。
        msg: 状态描述。
    """

    code: int = Field(default=200, description="业务状态码")
    data: T = Field(..., description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        return cls(code=code, data=data, msg=msg)

    @classmethod
    def fail_response(cls, msg: str, status_code: int) -> JSONResponse:
        """构造失败应答并包装为同状态码的 ``JSONResponse``（路由内提前返回时使用）。"""
        body = cls.fail(msg=msg, code=status_code).model_dump(by_alias=True)
        return JSONResponse(status_code=status_code, content=body)
