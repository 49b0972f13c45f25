"""
StealthPay - Network Monitor Tests
====================================
Sonda TCP contro un server locale.
"""

import asyncio

import pytest

from stealth_pay.network.monitor import NetworkMonitor, NetworkStatus, StaticNetworkStatus


async def _close_immediately(reader, writer):
    writer.close()


async def _start_probe_server():
    server = await asyncio.start_server(_close_immediately, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


class TestNetworkStatus:
    """Test status implementations"""
    
    def test_protocol(self):
        assert isinstance(StaticNetworkStatus(), NetworkStatus)
        assert isinstance(NetworkMonitor(), NetworkStatus)
    
    def test_static_toggle(self):
        status = StaticNetworkStatus(online=False)
        status.set_online(True)
        
        assert status.is_online()
    
    def test_from_settings(self, test_config):
        monitor = NetworkMonitor.from_settings(test_config)
        
        assert monitor.check_interval == test_config.connectivity_check_interval
        assert not monitor.is_online()


class TestNetworkMonitor:
    """Test TCP probe and callbacks"""
    
    @pytest.mark.asyncio
    async def test_probe_reachable_and_unreachable(self):
        server, port = await _start_probe_server()
        monitor = NetworkMonitor(probe_host="127.0.0.1", probe_port=port, timeout=1.0)
        
        assert await monitor.check_connectivity()
        
        server.close()
        
        assert not await monitor.check_connectivity()
    
    @pytest.mark.asyncio
    async def test_callbacks_on_change_only(self):
        server, port = await _start_probe_server()
        monitor = NetworkMonitor(probe_host="127.0.0.1", probe_port=port, timeout=1.0)
        sync_events = []
        async_events = []
        
        async def record_async(online):
            async_events.append(online)
        
        monitor.on_connectivity_change(sync_events.append)
        monitor.on_connectivity_change(record_async)
        
        await monitor.refresh()
        await monitor.refresh()
        server.close()
        await monitor.refresh()
        
        assert sync_events == [True, False]
        assert async_events == [True, False]
        assert not monitor.is_online()
    
    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_others(self):
        server, port = await _start_probe_server()
        monitor = NetworkMonitor(probe_host="127.0.0.1", probe_port=port, timeout=1.0)
        events = []
        
        def broken(online):
            raise RuntimeError("boom")
        
        monitor.on_connectivity_change(broken)
        monitor.on_connectivity_change(events.append)
        
        try:
            await monitor.refresh()
        finally:
            server.close()
        
        assert events == [True]
    
    @pytest.mark.asyncio
    async def test_background_loop(self):
        server, port = await _start_probe_server()
        monitor = NetworkMonitor(
            probe_host="127.0.0.1", probe_port=port, check_interval=0.01, timeout=1.0
        )
        
        await monitor.start()
        try:
            assert monitor.is_online()
            server.close()
            for _ in range(100):
                if not monitor.is_online():
                    break
                await asyncio.sleep(0.01)
            assert not monitor.is_online()
        finally:
            await monitor.stop()
