"""MyPA core -- shared error hierarchy."""
