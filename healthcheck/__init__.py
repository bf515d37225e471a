"""healthcheck — concurrent service monitor with Telegram alerting."""

__version__ = "0.1.0"
