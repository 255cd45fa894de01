"""
Job queue infrastructure.

This package provides the durable work queue and its dispatch core:
- Store-backed queue with a compare-and-set claim
- Registry-based pluggable handlers with typed results
- Attempt-counted retries with exponential backoff
- Stale claim reaping for crashed or interrupted workers
"""
