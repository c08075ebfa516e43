"""Exporters that crystallize a run into reusable artifacts."""
