# =============================================================================
# ops_core/__init__.py
# Operations board sync core
# =============================================================================
"""
Shared state layer for the operations board: SOPs, task templates, job
tasks, jobs, work hours and the activity log, kept in sync between a remote
Supabase store (or a local SQLite cache when offline) and every open client.
"""

__version__ = "1.0.0"
