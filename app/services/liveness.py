"""
app.services.liveness
~~~~~~~~~~~~~~~~~~~~~

心跳巡检 —— 定期探测半开连接并强制淘汰。

每一轮：上一轮探测后仍未回应的连接被强制关闭（走与主动断开完全相同的
清理流程）；其余连接标记为“等待回应”并发送一次 ``{"type": "ping"}`` 探测。
这是系统中唯一的超时机制。
"""
from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

from app.core.logging import get_logger
from app.schemas.ws_events import PingEvent
from app.services.connection import ConnectionRegistry
from app.services.room_broadcaster import Broadcaster

logger = get_logger(__name__)


class LivenessSupervisor:
    """周期性心跳巡检。

    Attributes:
        registry: 连接注册表。
        broadcaster: 用于发送探测帧。
        evict: 淘汰回调，参数为连接 ID，需完成断线清理并关闭传输。
        interval: 巡检间隔（秒）。
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: Broadcaster,
        evict: Callable[[str], Awaitable[None]],
        interval: float = 30.0,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.evict = evict
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    async def sweep(self) -> list[str]:
        """执行一轮巡检，返回本轮被淘汰的连接 ID。"""
        evicted: list[str] = []
        probes: list[str] = []
        for connection in self.registry.connections():
            if not connection.is_alive:
                evicted.append(connection.connection_id)
                continue
            connection.is_alive = False
            probes.append(connection.connection_id)

        for connection_id in evicted:
            logger.info("心跳超时，强制断开 | conn=%s", connection_id)
            await self.evict(connection_id)

        if probes:
            await self.broadcaster.broadcast(probes, PingEvent().payload())
        return evicted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.error("心跳巡检异常", exc_info=True)

    def start(self) -> None:
        """在当前事件循环中启动巡检任务（重复调用无副作用）。"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info("心跳巡检已启动 | interval=%.1fs", self.interval)

    async def stop(self) -> None:
        """取消巡检任务并等待其退出。"""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("心跳巡检已停止")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
