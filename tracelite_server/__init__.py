"""tracelite: OTLP trace and log ingestion server backed by PostgreSQL"""

__version__ = "0.1.0"
