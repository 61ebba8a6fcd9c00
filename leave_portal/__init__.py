"""Leave Portal — leave lifecycle core for a directorate-structured civil service."""
