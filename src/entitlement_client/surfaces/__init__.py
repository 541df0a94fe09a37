"""
Interactive surfaces for the authorization flow.

Re-exports surface classes for convenient imports:
    from entitlement_client.surfaces import LoopbackBrowserSurface
"""

__all__: list[str] = []

# System browser + loopback receiver (starlette, uvicorn)
try:
    from .loopback import LoopbackBrowserSurface, create_redirect_app
    __all__.extend(["LoopbackBrowserSurface", "create_redirect_app"])
except ImportError:
    pass
