"""Command runners used to replay crystallized artifacts."""
