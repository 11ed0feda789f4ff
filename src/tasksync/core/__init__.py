"""
Core contracts.

- errors.py: error taxonomy (storage, remote, unresolved references)
- ports.py: LocalStore / RemoteAuthority / Session / Connectivity protocols
- state.py: AppState wiring container
"""
