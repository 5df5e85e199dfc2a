"""Install pipeline, install queue and their collaborators."""
