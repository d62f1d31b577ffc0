"""FastAPI dependency providers shared across features."""
