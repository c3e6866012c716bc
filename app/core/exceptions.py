"""
app.core.exceptions
~~~~~~~~~~~~~~~~~~~

业务异常定义。

实时通道中的异常不会跨越单个连接事件的边界：``RoomCoordinator`` 会把
``ProtocolError`` / ``PersistenceError`` 转换为发给来源连接的 ``error`` 事件。
"""
from __future__ import annotations


class ChatError(Exception):
    """聊天服务异常基类。"""


class ProtocolError(ChatError):
    """入站事件格式错误、类型未知或字段非法。

    Attributes:
        message: 返回给客户端的错误描述（写入 ``error`` 事件的 ``message`` 字段）。
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PersistenceError(ChatError):
    """持久化层调用失败（MongoDB 不可用、写入失败等）。"""


class DuplicateWordError(ChatError):
    """同一群组内重复添加违禁词。"""
