"""External collaborators and their adapters."""
