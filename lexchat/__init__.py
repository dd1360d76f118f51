"""Orchestration core of the legal research chat assistant."""
