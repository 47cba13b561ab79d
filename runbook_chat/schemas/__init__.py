"""Request schemas and shared enums."""
