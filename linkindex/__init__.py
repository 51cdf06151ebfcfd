"""
linkindex package initializer.
"""

from . import analytics
from . import index
from . import manager
from . import stats
from . import storage

__all__ = ["analytics", "index", "manager", "stats", "storage"]

__version__ = "0.1.0"
