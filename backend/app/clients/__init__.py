"""
Client package — vendor client handles behind one registry.

Modules:
    registry     — generic connect / probe / cache
    timeseries   — InfluxDB 3
    objectstore  — MinIO
    relational   — MySQL via SQLAlchemy
"""
