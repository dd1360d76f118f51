"""Shared infrastructure for the legal research chat core."""
