"""ReturnPilot - return and exchange orchestration service."""

__version__ = "0.1.0"
