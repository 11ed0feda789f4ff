"""
Offline sync.

Components:
- outbox.py: ordered durable queue of pending mutations
- identity.py: provisional -> authoritative id mapping
- reconciler.py: single-flight outbox replay
- connectivity.py: online/offline state and the ping probe
"""
