"""Internal implementation packages."""
