"""Outreach Agent - outbound follow-up call scheduling and tracking."""

__version__ = "0.1.0"
