"""Core infrastructure: settings, logging, exceptions and database access."""
