"""Infrastructure layer — persistence and workflow locks."""
