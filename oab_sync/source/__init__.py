"""
oab_sync.source - Directory feed loading
"""

from oab_sync.source.feed import FeedError, load_feed, read_entries

__all__ = ["FeedError", "load_feed", "read_entries"]
