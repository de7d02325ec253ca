"""Shared helpers used across Deploytrail packages."""
