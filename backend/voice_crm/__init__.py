"""Voice CRM backend: call-transcript intelligence and lead synthesis."""

__version__ = "0.1.0"
