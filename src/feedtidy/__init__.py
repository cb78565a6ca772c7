"""feedtidy - Transit Feed Tidier

A small Python package to shrink and deduplicate GTFS-style transit feeds.
"""

from .errors import FeedTidyError, FeedParseError, FeedWriteError, FeedInvariantError
from .graph import Feed
from .pipeline import tidy_feed, validate_feed
from .reader import read_feed
from .types import TidyConfig, ProcessingStats
from .writer import write_feed

__version__ = "0.1.0"
__all__ = [
    "tidy_feed",
    "validate_feed",
    "read_feed",
    "write_feed",
    "Feed",
    "TidyConfig",
    "ProcessingStats",
    "FeedTidyError",
    "FeedParseError",
    "FeedWriteError",
    "FeedInvariantError",
]
