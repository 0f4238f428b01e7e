"""Shared data model and helpers used by agents and backend."""
