"""
Session lifecycle core.

- credentials: id/key generation
- registry: live-session lookup
- scheduler: periodic behaviors on a live connection
- supervisor: per-session connect/reconnect state machine
- manager: create/delete facade
- broadcaster: periodic liveness snapshots for observers
"""
