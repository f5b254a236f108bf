"""Planner: conversational task planning with Google Calendar write-back."""

__version__ = "0.1.0"
