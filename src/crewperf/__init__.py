"""Crew performance reconciliation pipeline."""
