"""Sync infrastructure for the release tracker.

Modules:
    scheduler: Debounced flush of pending edits (quiescence timer, requeue on failure)
    session  : SyncSession: owns the buffer and scheduler for one running app
"""
