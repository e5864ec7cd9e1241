"""
Services module: application-level services for stream jobs.
"""

from .streams import StreamService, safe_filename

__all__ = ["StreamService", "safe_filename"]
