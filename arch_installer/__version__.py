"""Version information for arch-installer."""

__version__ = "1.0.0"
