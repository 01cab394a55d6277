"""Notification dispatch application package."""
