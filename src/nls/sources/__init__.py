from .base import LineFeed, LogPage, LogSource, PageFormatError
from .nextdns import NextDnsLogSource

__all__ = [
    "LineFeed",
    "LogPage",
    "LogSource",
    "NextDnsLogSource",
    "PageFormatError",
]
