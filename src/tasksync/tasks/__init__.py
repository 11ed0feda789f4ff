"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, OutboxEntry) + wire normalization
- task_store.py: SQLite-backed storage for tasks, id mappings and the outbox
- projector.py: in-memory visible task collection
- task_api.py: TaskService, the user-facing mutation flow
"""
