"""Engine components, configuration and schemas."""
