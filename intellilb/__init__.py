"""Load balancer building blocks: configuration, algorithms, breakers, health checks, entrypoints and traffic tools."""

__version__ = "0.1.0"