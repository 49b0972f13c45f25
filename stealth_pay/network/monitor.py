"""
StealthPay - Network Monitor
==============================
Raggiungibilita' di rete per l'auto-settlement della coda pagamenti.

Security Level: LOW
Last Updated: 2026-10-18
Version: 1.0.0
"""

import asyncio
import inspect
from typing import Any, Callable, List, Optional, Protocol, runtime_checkable

from stealth_pay.constants import (
    CONNECTIVITY_CHECK_INTERVAL_SECONDS,
    CONNECTIVITY_PROBE_HOST,
    CONNECTIVITY_PROBE_PORT,
    CONNECTIVITY_TIMEOUT_SECONDS,
)
from stealth_pay.logging_setup import get_logger


logger = get_logger("network")

ConnectivityCallback = Callable[[bool], Any]


@runtime_checkable
class NetworkStatus(Protocol):
    """Check booleano di raggiungibilita' interrogato dall'auto-settlement"""
    
    def is_online(self) -> bool:
        ...


class StaticNetworkStatus:
    """Stato di rete impostato manualmente (test, modalita' offline forzata)"""
    
    def __init__(self, online: bool = True):
        self.online = online
    
    def is_online(self) -> bool:
        return self.online
    
    def set_online(self, online: bool) -> None:
        self.online = online


class NetworkMonitor:
    """
    Monitor di connettivita' basato su una sonda TCP.
    
    Un task in background esegue il check ogni ``check_interval`` secondi
    e notifica le callback registrate ad ogni cambio di stato.
    
    Args:
        probe_host: Host TCP da contattare
        probe_port: Porta TCP
        check_interval: Intervallo tra i check (secondi)
        timeout: Timeout della connessione di prova (secondi)
    
    Example:
        >>> monitor = NetworkMonitor()
        >>> monitor.on_connectivity_change(lambda online: print(online))
        >>> await monitor.start()
    """
    
    def __init__(
        self,
        probe_host: str = CONNECTIVITY_PROBE_HOST,
        probe_port: int = CONNECTIVITY_PROBE_PORT,
        check_interval: float = CONNECTIVITY_CHECK_INTERVAL_SECONDS,
        timeout: float = CONNECTIVITY_TIMEOUT_SECONDS,
    ):
        self.probe_host = probe_host
        self.probe_port = probe_port
        self.check_interval = check_interval
        self.timeout = timeout
        
        self._online = False
        self._callbacks: List[ConnectivityCallback] = []
        self._task: Optional[asyncio.Task] = None
    
    @classmethod
    def from_settings(cls, settings) -> "NetworkMonitor":
        return cls(
            probe_host=settings.connectivity_probe_host,
            probe_port=settings.connectivity_probe_port,
            check_interval=settings.connectivity_check_interval,
            timeout=settings.connectivity_timeout,
        )
    
    def is_online(self) -> bool:
        return self._online
    
    def on_connectivity_change(self, callback: ConnectivityCallback) -> None:
        """Registra una callback (sync o async) invocata con il nuovo stato"""
        self._callbacks.append(callback)
    
    async def check_connectivity(self) -> bool:
        """Prova ad aprire una connessione TCP verso la sonda"""
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.probe_host, self.probe_port),
                timeout=self.timeout,
            )
        except (OSError, asyncio.TimeoutError):
            return False
        
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Probe connection close failed: {e}")
        return True
    
    async def refresh(self) -> bool:
        """Esegue un check e notifica se lo stato e' cambiato"""
        online = await self.check_connectivity()
        if online != self._online:
            self._online = online
            logger.info(
                "Connectivity changed",
                extra_data={"online": online, "probe": f"{self.probe_host}:{self.probe_port}"}
            )
            await self._notify(online)
        return online
    
    async def _notify(self, online: bool) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback(online)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Connectivity callback failed: {e}",
                    extra_data={"callback": getattr(callback, "__name__", repr(callback))},
                    exc_info=True
                )
    
    # ========================================================================
    # BACKGROUND TASK
    # ========================================================================
    
    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        await self.refresh()
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info("Network monitor started", extra_data={"online": self._online})
    
    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Network monitor stopped")
    
    async def _monitor_loop(self):
        while True:
            try:
                await asyncio.sleep(self.check_interval)
                await self.refresh()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Network monitor error: {e}", exc_info=True)


__all__ = [
    "NetworkStatus",
    "StaticNetworkStatus",
    "NetworkMonitor",
]
