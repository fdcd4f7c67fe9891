"""Library circulation tracking."""
