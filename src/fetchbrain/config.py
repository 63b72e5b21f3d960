"""
SDK configuration.
"""

import os
import typing as t

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from fetchbrain.models import IntelligenceLevel

API_KEY_ENV_VAR = "FETCHBRAIN_API_KEY"
BASE_URL_ENV_VAR = "FETCHBRAIN_BASE_URL"
DEFAULT_BASE_URL = "https://api.fetchbrain.com"

AlwaysRun = bool | str | list[str]


def resolve_api_key(api_key: str | None = None) -> str:
    """
    Resolve the API key from the argument or the environment.

    Parameters
    ----------
    api_key : str | None, optional
        Explicit API key.

    Returns
    -------
    str
        API key to send as bearer token.
    """
    if api_key:
        return api_key
    load_dotenv()
    api_key = os.getenv(key=API_KEY_ENV_VAR)
    if not api_key:
        raise ValueError(
            f"API key not found. Either set {API_KEY_ENV_VAR} in the environment variables "
            "or provide it through the api_key parameter."
        )
    return api_key


class FetchBrainConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    api_key: str = Field(description="bearer token, read from FETCHBRAIN_API_KEY when omitted")
    base_url: str = Field(default=DEFAULT_BASE_URL, description="knowledge service base URL")
    intelligence_level: IntelligenceLevel = Field(
        default=IntelligenceLevel.high,
        description="inference accuracy requested from the service",
    )
    learning_enabled: bool = Field(
        default=True, description="whether newly scraped data is taught back to the service"
    )
    always_run: AlwaysRun = Field(
        default=False,
        description=(
            "which handlers still run when the service knows the URL: False skips all, "
            "True runs all, a label or list of labels runs only those"
        ),
    )
    timeout_seconds: float = Field(default=0.5, gt=0)
    batch_max_size: int = Field(default=50, gt=0)
    batch_max_wait_seconds: float = Field(default=0.05, gt=0)
    circuit_failure_threshold: int = Field(default=3, gt=0)
    circuit_reset_timeout_seconds: float = Field(default=30.0, ge=0)
    circuit_success_threshold: int = Field(default=1, gt=0)
    extract_for_learning: t.Callable[[dict[str, t.Any]], dict[str, t.Any]] | None = Field(
        default=None,
        description="optional mapping applied to scraped data before teaching",
        exclude=True,
    )
    debug: bool = False

    @model_validator(mode="before")
    @classmethod
    def fill_from_environment(cls, data: t.Any):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["api_key"] = resolve_api_key(api_key=data.get("api_key"))
        if not data.get("base_url"):
            data["base_url"] = os.getenv(key=BASE_URL_ENV_VAR) or DEFAULT_BASE_URL
        return data

    def with_overrides(self, **overrides: t.Any) -> "FetchBrainConfig":
        """Validated copy of this configuration with ``overrides`` applied."""
        if not overrides:
            return self
        return type(self)(**{**dict(self), **overrides})
