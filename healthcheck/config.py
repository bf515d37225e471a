from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Process configuration loaded from environment / .env file.

    Service definitions and alerting defaults live in the YAML file
    pointed to by ``healthcheck_config``; this covers everything else.
    """

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Services file (HEALTHCHECK_CONFIG)
    healthcheck_config: str = "healthcheck.yaml"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8080  # used when the services file has no web_port
    static_dir: str = "frontend"

    # Hot swap
    replace_grace_seconds: float = 5.0
    preserve_state_on_reload: bool = False

    # Extra time on top of a probe's own timeout before the runner gives up on it
    probe_deadline_slack_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"

    # Notifications (Telegram credentials come from the services file)
    slack_webhook_url: str = ""


settings = Settings()
