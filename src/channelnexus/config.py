"""Summary: Application configuration for Channel Nexus.

Importance: Centralizes environment, .env, and config defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for providers, storage, and the API.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    db_path: str
    api_host: str
    api_port: int
    app_origin: str
    default_user_name: str
    default_user_email: str
    api_key: str
    token_secret: str
    slack_client_id: str
    slack_client_secret: str
    slack_redirect_uri: str
    slack_token_url: str
    discord_client_id: str
    discord_client_secret: str
    discord_redirect_uri: str
    discord_token_url: str
    discord_identity_url: str
    oauth_timeout_seconds: float = 120.0
    exchange_base_url: str = ""

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        app_origin = os.getenv("CHANNELNEXUS_APP_ORIGIN", defaults["app_origin"]).rstrip("/")
        return AppConfig(
            db_path=os.getenv("CHANNELNEXUS_DB_PATH", defaults["db_path"]),
            api_host=os.getenv("CHANNELNEXUS_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("CHANNELNEXUS_API_PORT", defaults["api_port"])),
            app_origin=app_origin,
            default_user_name=os.getenv(
                "CHANNELNEXUS_DEFAULT_USER_NAME", defaults["default_user_name"]
            ),
            default_user_email=os.getenv(
                "CHANNELNEXUS_DEFAULT_USER_EMAIL", defaults["default_user_email"]
            ),
            api_key=os.getenv("CHANNELNEXUS_API_KEY", defaults["api_key"]),
            token_secret=os.getenv("CHANNELNEXUS_TOKEN_SECRET", defaults["token_secret"]),
            slack_client_id=os.getenv("SLACK_CLIENT_ID", defaults["slack_client_id"]),
            slack_client_secret=os.getenv("SLACK_CLIENT_SECRET", defaults["slack_client_secret"]),
            slack_redirect_uri=os.getenv("SLACK_REDIRECT_URI")
            or defaults["slack_redirect_uri"]
            or default_redirect_uri(app_origin, "slack"),
            slack_token_url=os.getenv("SLACK_TOKEN_URL", defaults["slack_token_url"]),
            discord_client_id=os.getenv("DISCORD_CLIENT_ID", defaults["discord_client_id"]),
            discord_client_secret=os.getenv(
                "DISCORD_CLIENT_SECRET", defaults["discord_client_secret"]
            ),
            discord_redirect_uri=os.getenv("DISCORD_REDIRECT_URI")
            or defaults["discord_redirect_uri"]
            or default_redirect_uri(app_origin, "discord"),
            discord_token_url=os.getenv("DISCORD_TOKEN_URL", defaults["discord_token_url"]),
            discord_identity_url=os.getenv(
                "DISCORD_IDENTITY_URL", defaults["discord_identity_url"]
            ),
            oauth_timeout_seconds=float(
                os.getenv("CHANNELNEXUS_OAUTH_TIMEOUT_SECONDS", defaults["oauth_timeout_seconds"])
            ),
            exchange_base_url=os.getenv("CHANNELNEXUS_EXCHANGE_BASE_URL")
            or defaults["exchange_base_url"]
            or app_origin,
        )


def default_redirect_uri(app_origin: str, provider: str) -> str:
    """Summary: Build the relay page URL registered with a provider.

    Importance: The same value must be used for the authorization URL and the code exchange.
    Alternatives: Require every deployment to configure redirect URIs explicitly.
    """

    return f"{app_origin.rstrip('/')}/oauth/{provider}/callback"


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps provider secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())
