"""Live migration of a Debian root, swap and LVM /home to a larger disk."""

from .__version__ import __version__


__all__ = ["__version__"]
