"""
taski_sync: task list synchronization and reminder scheduling.

Packages:
- core: ports (collaborator protocols), error taxonomy, composition state
- tasks: task model, reminder policy, sync controller, SQLite store
- reminders: in-process reminder scheduler and dispatch loop
- cli / connectors: console entrypoint
"""

__version__ = "0.1.0"
