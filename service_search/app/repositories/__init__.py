"""Read-side access to documents and categories for candidate selection."""
