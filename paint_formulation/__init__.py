"""Paint formulation engine and recipe service."""
