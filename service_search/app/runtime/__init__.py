"""Process-wide runtime state: search counters and the shared context."""
