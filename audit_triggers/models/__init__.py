"""SQL models module."""
