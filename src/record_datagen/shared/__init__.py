"""Shared models, caches, errors, logging and metrics for record generation."""
