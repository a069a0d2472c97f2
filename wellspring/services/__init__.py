"""Wellspring crisis-support services.

- safety_service: keyword/behavioral indicator detection
- crisis_engine: scoring, protocols and alert lifecycle
- audit_service: hash-chained audit trail for every crisis decision

Subject identifiers are hashed with hash_pii() before they reach any log.
"""
