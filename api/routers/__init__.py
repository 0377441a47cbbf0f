"""Route modules — imported lazily by the app factory."""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter

logger = logging.getLogger(__name__)

# Module paths (relative to this package) that provide a ``router`` attribute.
_ROUTER_MODULES = [
    ".jobs",
    ".operations",
    ".subjects",
    ".config_mgmt",
    ".system",
]


def all_routers() -> List[APIRouter]:
    """Import and return every router.

    A router that fails to import is a packaging bug, so the error is
    logged and re-raised rather than silently dropping endpoints.
    """
    import importlib

    routers: List[APIRouter] = []
    for mod_path in _ROUTER_MODULES:
        try:
            mod = importlib.import_module(mod_path, package=__name__)
        except Exception:
            logger.error("Router %s failed to import", mod_path)
            raise
        routers.append(mod.router)
    return routers
