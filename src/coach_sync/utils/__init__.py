"""Utility helpers for coach-sync."""
