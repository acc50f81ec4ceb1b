"""Infrastructure adapters: logging, metrics, database, resilience, transports."""
