"""Action registry and handlers."""
