"""Version information for nvme-migrate."""

__version__ = "1.0.0"
