"""
Macicast backend: stream ingestion for an IPTV-style platform.
"""

__version__ = "0.1.0"
