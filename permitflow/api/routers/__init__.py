"""API routers for permitflow."""

from . import health
from . import permits
from . import push

__all__ = [
    "health",
    "permits",
    "push",
]
