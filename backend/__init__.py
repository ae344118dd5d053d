"""Backend configuration and persisted models."""
