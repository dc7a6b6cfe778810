"""Version information for ramp."""

__version__ = "0.4.0"
