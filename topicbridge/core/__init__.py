# topicbridge/core/__init__.py
"""
topicbridge core module
Application wiring: runtime, lifespan, routes and shutdown
"""

from topicbridge import __version__, __description__

__all__ = [
    "__version__",
    "__description__",
]
