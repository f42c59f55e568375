import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from rule_handler.core_api.exceptions import InvalidParameterError

# Usually your project root is where pyproject.toml is
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = Path(os.environ.get("RULE_HANDLER_DATA_DIR", PROJECT_ROOT / "data"))

# Defaults for the remote API. Every one of them can be overridden from the
# environment or from the CLI options on the top-level command. The
# environment is read when settings are built, so a bad value surfaces as an
# InvalidParameterError from load_settings rather than at import.
API_ENDPOINT = "http://localhost:4000/api"
REQUEST_TIMEOUT = "10.0"
NOTIFICATION_TITLE = "Rule triggered"

API_ENDPOINT_ENV = "RULE_HANDLER_API_ENDPOINT"
JWT_SECRET_ENV = "RULE_HANDLER_JWT_SECRET"
REQUEST_TIMEOUT_ENV = "RULE_HANDLER_REQUEST_TIMEOUT"
NOTIFICATION_TITLE_ENV = "RULE_HANDLER_NOTIFICATION_TITLE"

GRAPHQL_PATH = "/graphql"


def _from_env(name: str, default: Optional[str] = None):
    return lambda: os.environ.get(name, default)


class HandlerSettings(BaseModel):
    """Explicit configuration threaded into the rule engine and API calls."""

    api_endpoint: str = Field(default_factory=_from_env(API_ENDPOINT_ENV, API_ENDPOINT), validate_default=True)
    jwt_secret: Optional[str] = Field(default_factory=_from_env(JWT_SECRET_ENV))
    request_timeout: float = Field(
        default_factory=_from_env(REQUEST_TIMEOUT_ENV, REQUEST_TIMEOUT), gt=0, validate_default=True
    )
    notification_title: str = Field(default_factory=_from_env(NOTIFICATION_TITLE_ENV, NOTIFICATION_TITLE))

    @field_validator("api_endpoint")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("api_endpoint cannot be empty")
        return value.rstrip("/")

    @property
    def graphql_url(self) -> str:
        return f"{self.api_endpoint}{GRAPHQL_PATH}"


def load_settings(**overrides) -> HandlerSettings:
    """
    Builds HandlerSettings from the environment defaults, applying any
    non-None overrides (typically coming from CLI options).
    Raises InvalidParameterError if a value does not validate.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return HandlerSettings(**values)
    except ValidationError as e:
        raise InvalidParameterError(
            f"Invalid rule handler configuration: {e.errors()}", original_exception=e
        )
