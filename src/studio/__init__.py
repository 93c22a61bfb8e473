"""Generation task lifecycle service."""
