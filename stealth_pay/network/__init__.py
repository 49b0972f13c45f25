"""StealthPay - Network status"""

from stealth_pay.network.monitor import NetworkStatus, StaticNetworkStatus, NetworkMonitor

__all__ = ["NetworkStatus", "StaticNetworkStatus", "NetworkMonitor"]
