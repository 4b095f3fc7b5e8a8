"""Domain models, enums and quality scoring."""
