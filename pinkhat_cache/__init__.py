"""
Pinkhat game-results cache.

Mirrors GameManager contract events into a local relational store and
serves player, game and leaderboard reads from it, falling back to the
chain node when the cache cannot answer.
"""

__version__ = "0.1.0"
