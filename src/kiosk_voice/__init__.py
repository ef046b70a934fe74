"""Kiosk voice assistant: speech turn-taking front end and chat relay."""

__version__ = "0.1.0"
