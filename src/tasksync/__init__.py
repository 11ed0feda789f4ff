"""
tasksync: offline-first task list that reconciles with a REST task server.

Local writes land in SQLite first; mutations made while offline are queued in a
durable outbox and replayed in order once the server is reachable again.
"""
