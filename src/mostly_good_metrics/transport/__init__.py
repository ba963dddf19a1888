from mostly_good_metrics.transport.base import NetworkClient
from mostly_good_metrics.transport.http import HttpNetworkClient

__all__ = ["NetworkClient", "HttpNetworkClient"]
