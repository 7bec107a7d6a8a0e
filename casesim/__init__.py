"""Clinical case dialogue engine."""
