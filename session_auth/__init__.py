"""Session and credential lifecycle service."""
