"""
Reminder subsystem.

- local_scheduler.py: pending reminders keyed by task id + polling dispatch loop
"""
