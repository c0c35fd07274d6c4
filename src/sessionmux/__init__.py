"""Session-multiplexed terminal controller."""

__version__ = "0.1.0"
