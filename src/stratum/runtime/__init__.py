from stratum.runtime.monitor import HttpResourceMonitor, ResourceMonitor
from stratum.runtime.state import Runtime, configure_runtime, get_runtime, reset_runtime

__all__ = [
    "HttpResourceMonitor",
    "ResourceMonitor",
    "Runtime",
    "configure_runtime",
    "get_runtime",
    "reset_runtime",
]
