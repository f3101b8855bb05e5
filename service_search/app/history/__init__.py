"""Best-effort search history persistence."""
