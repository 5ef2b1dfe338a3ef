"""Data models for sessions, participants, and map updates."""
