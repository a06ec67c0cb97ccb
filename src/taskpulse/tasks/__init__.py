"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, LocalId / ServerId)
- task_validation.py: field rules shared by the store and the synchronizer
- task_store.py: SQLite-backed authoritative store, emits change payloads
- change_feed.py: change payload codec, in-process hub, feed client
- task_sync.py: client-side synchronizer (optimistic updates + feed merge)
"""
