"""Storage backends, query translation and schema migration."""
