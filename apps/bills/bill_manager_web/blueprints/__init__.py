"""HTTP blueprints for the bill manager."""
