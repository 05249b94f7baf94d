"""Order management: lifecycle service, durable processing queue and worker."""

__version__ = "0.1.0"
