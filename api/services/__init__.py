"""Services that sit between the routers and the job core."""
from .auto_discovery import AutoDiscoveryService
from .chunker import LineChunker
from .job_service import JobService

__all__ = ["AutoDiscoveryService", "JobService", "LineChunker"]
