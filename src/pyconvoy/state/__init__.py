"""State/store layer.

This package is the single source of truth for how updates from the live
feed, the REST roster and the local simulator are merged into per-drone
snapshots.
"""
