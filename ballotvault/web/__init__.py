"""
Web module - Flask HTTP gateway.
"""

from ballotvault.web.app import create_app

__all__ = ["create_app"]
