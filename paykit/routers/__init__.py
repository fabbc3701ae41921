"""API路由"""

from .notify import create_notify_router

__all__ = ["create_notify_router"]
