"""Legacy software automation agency: task dispatch with retry and escalation."""

__version__ = "1.0.0"
