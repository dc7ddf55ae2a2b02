"""
rangescan kernel

Key-space partitioning over ordinal-encoded keys:
- Bidirectional key <-> ordinal codec over a configured alphabet
- Immutable key ranges with exact bisection
- Balanced shard partitioning, normalized against stored keys
- Ordered key store with opaque keyset cursors
"""

__version__ = "0.1.0"
