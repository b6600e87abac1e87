"""
Synchronizer that mirrors GameManager events into the cache store.
"""
