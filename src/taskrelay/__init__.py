"""
taskrelay: queue semantics (enqueue, claim-once, complete, observe-result) on top of
a plain key-value store with TTLs and prefix listing.
"""

__version__ = "0.4.0"
