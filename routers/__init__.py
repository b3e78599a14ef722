"""
API endpoints and request handling.
Can import from: services, models
Must NOT import from: repositories (call via services)
"""

from . import security_analysis

__all__ = [
    "security_analysis",
]
