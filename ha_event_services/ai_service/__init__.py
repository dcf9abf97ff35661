"""AI suggestion service: contexts, generation, validation, approval gate."""
