"""Domain services for song ratings."""
