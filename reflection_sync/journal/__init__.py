"""Journal stream analytics."""
