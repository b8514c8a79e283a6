"""permitflow - permit-to-work lifecycle tracking and notification dispatch."""

__version__ = "0.1.0"
