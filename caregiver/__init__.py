"""Caregiver voice assistant: patient records with a live voice front end."""

__version__ = "0.1.0"
