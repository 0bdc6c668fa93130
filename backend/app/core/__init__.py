"""
Core package — cross-cutting concerns.

Modules:
    config          — environment settings & YAML client configuration
    logging_config  — structured logging, presets, rotating file sink
    errors          — exception hierarchy
    health          — client health check aggregation
"""
