"""Scheduling and AI review logic for the Conspecto study core."""
