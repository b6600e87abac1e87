"""
Core infrastructure: settings, logging, database plumbing and exceptions.
"""
