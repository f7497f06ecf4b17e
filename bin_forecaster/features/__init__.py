"""Feature derivation from collection history.

Modules
-------
cycle_features — CycleFeatures dataclass + extract_cycle_features() (pure).
"""
