"""Infrastructure layer: configuration, persistence and gateway clients."""
