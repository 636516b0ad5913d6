"""OnAir radio backend: anonymous song ratings over SQLite or PostgreSQL."""

__version__ = "0.1.0"
