"""
tipstore Test Suite.

This package contains:
- unit/: Unit tests (in-memory backends, temporary SQLite files)
- integration/: Orchestrator tests over the full stack with in-memory content
"""
