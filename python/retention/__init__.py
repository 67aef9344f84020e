"""Delete old AMIs for a role, keeping the most recent ones."""

__version__ = "0.1.0"
