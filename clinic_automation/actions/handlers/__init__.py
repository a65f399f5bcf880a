"""Action handlers: thin adapters over the engine's external collaborators."""
