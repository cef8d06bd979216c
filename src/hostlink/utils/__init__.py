"""Small helpers shared across hostlink modules."""
