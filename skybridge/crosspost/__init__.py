"""Source and destination network clients."""
