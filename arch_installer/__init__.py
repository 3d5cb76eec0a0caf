"""Guided Arch Linux installation for UEFI machines."""

from arch_installer.__version__ import __version__

__all__ = ["__version__"]
