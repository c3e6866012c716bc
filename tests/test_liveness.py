"""
tests.test_liveness
~~~~~~~~~~~~~~~~~~~

心跳巡检测试：探测、淘汰，以及淘汰与主动断开走同一条清理路径。
"""
from __future__ import annotations

import asyncio

import pytest

from app.services.chat_hub import ChatHub


class TestSweep:
    """测试单轮巡检。"""

    @pytest.mark.asyncio
    async def test_first_sweep_only_probes(self, hub: ChatHub, open_conn) -> None:
        c1, t1 = open_conn()

        evicted = await hub.supervisor.sweep()

        assert evicted == []
        assert t1.sent == [{"type": "ping"}]
        assert hub.registry.lookup(c1).is_alive is False

    @pytest.mark.asyncio
    async def test_pong_keeps_connection(self, hub: ChatHub, open_conn, send) -> None:
        c1, t1 = open_conn()

        await hub.supervisor.sweep()
        await send(c1, type="pong")
        evicted = await hub.supervisor.sweep()

        assert evicted == []
        assert c1 in hub.registry
        assert t1.of_type("ping") == [{"type": "ping"}, {"type": "ping"}]

    @pytest.mark.asyncio
    async def test_any_frame_counts_as_alive(self, hub: ChatHub, open_conn, send) -> None:
        c1, _ = open_conn()

        await hub.supervisor.sweep()
        await send(c1, type="list", roomId="home")

        assert await hub.supervisor.sweep() == []

    @pytest.mark.asyncio
    async def test_silent_connection_is_evicted(self, hub: ChatHub, open_conn, send) -> None:
        """未回应探测的连接在下一轮被淘汰，并产生与断开相同的广播。"""
        silent, t_silent = open_conn()
        peer, t_peer = open_conn()
        await send(silent, type="join", roomId=42, username="carol", userId=3)
        await send(peer, type="join", roomId=42, username="dave", userId=4)

        await hub.supervisor.sweep()
        await send(peer, type="pong")
        t_peer.clear()

        evicted = await hub.supervisor.sweep()

        assert evicted == [silent]
        assert silent not in hub.registry
        assert t_silent.close_codes == [1001]
        assert t_peer.of_type("member_left") == [{"type": "member_left", "user": "carol", "clientId": silent}]
        assert t_peer.of_type("online_users_update") == [{"type": "online_users_update", "userIds": [4]}]
        assert not hub.presence.is_online(3)
        assert hub.index.member_ids(42) == [peer]

    @pytest.mark.asyncio
    async def test_evict_sets_closed_signal(self, hub: ChatHub, open_conn) -> None:
        c1, _ = open_conn()
        connection = hub.registry.lookup(c1)

        await hub.evict(c1)

        assert connection.closed.is_set()
        assert c1 not in hub.registry

    @pytest.mark.asyncio
    async def test_evict_tolerates_close_failure(self, hub: ChatHub, open_conn) -> None:
        c1, transport = open_conn()

        async def broken_close(code: int = 1000, reason: str | None = None) -> None:
            raise RuntimeError("already closed")

        transport.close = broken_close
        await hub.evict(c1)
        await hub.evict(c1)

        assert c1 not in hub.registry


class TestSupervisorTask:
    """测试后台巡检任务的启停。"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, hub: ChatHub) -> None:
        hub.supervisor.start()
        hub.supervisor.start()
        assert hub.supervisor.running

        await hub.supervisor.stop()
        assert not hub.supervisor.running

    @pytest.mark.asyncio
    async def test_background_loop_evicts(self, hub: ChatHub, open_conn) -> None:
        hub.supervisor.interval = 0.01
        c1, transport = open_conn()

        hub.supervisor.start()
        for _ in range(100):
            if c1 not in hub.registry:
                break
            await asyncio.sleep(0.01)
        await hub.supervisor.stop()

        assert c1 not in hub.registry
        assert transport.close_codes == [1001]
