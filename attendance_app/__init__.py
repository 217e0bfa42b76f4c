"""Attendance ingestion and reconciliation package."""
