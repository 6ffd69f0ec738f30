"""Content curation pipeline: staged promotion of learning content with a permanent audit trail."""
