"""Release watch: release notifications for tracked repositories."""

__version__ = "0.1.0"
