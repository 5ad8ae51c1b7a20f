"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskTag) and field helpers
- reminder_policy.py: pure schedule/cancel decision for a task transition
- sync_controller.py: live subscription, local cache, write-through mutations
- sqlite_store.py: SQLite-backed remote store with live subscriptions
- task_api.py: small high-level helpers used by the console
"""
