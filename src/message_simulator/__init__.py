"""Message Simulator - persistent multi-thread chat store."""

__version__ = "0.1.0"
