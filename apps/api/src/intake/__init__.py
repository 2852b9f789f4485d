"""Intake API - admissions, member credentials and password recovery."""
