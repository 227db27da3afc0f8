"""Multi-source polling scheduler and single-flight briefing pipeline tracker."""

__version__ = "0.1.0"
