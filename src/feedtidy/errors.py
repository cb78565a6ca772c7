"""Exception types raised by feedtidy."""

from typing import Optional


class FeedTidyError(Exception):
    """
    Generic exception for the feedtidy library
    """


class FeedParseError(FeedTidyError):
    """
    Input feed could not be parsed into the entity graph
    """

    def __init__(self, message: str, table: Optional[str] = None, row: Optional[int] = None):
        location = ""
        if table is not None:
            location = f"{table}.txt"
            if row is not None:
                location += f", row {row}"
            location = f"[{location}] "
        super().__init__(f"{location}{message}")
        self.table = table
        self.row = row


class FeedWriteError(FeedTidyError):
    """
    Feed could not be written to its destination
    """

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not write feed to '{path}': {reason}")
        self.path = path


class FeedInvariantError(FeedTidyError):
    """
    A processor reached a state that breaks the entity graph invariants
    """
