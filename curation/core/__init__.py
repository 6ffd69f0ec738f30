"""Core configuration, database plumbing, enums and errors."""
