"""Core collaboration engine: sessions, queues, broadcast, conflicts."""
