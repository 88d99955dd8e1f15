"""Configuration: frozen Config with explicit backend selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import os
from urllib.parse import urlparse

from dotenv import load_dotenv

from switchboard._http import normalize_base_url
from switchboard.errors import ConfigurationError

load_dotenv()


class BackendKind(str, Enum):
    """Backends the adapter can dispatch to."""

    OPENAI_COMPATIBLE = "openai-compatible"
    OLLAMA = "ollama"


DEFAULT_OPENAI_ENDPOINT = "https://api.openai.com/v1"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OLLAMA_ENDPOINT = "http://127.0.0.1:11434"
DEFAULT_OLLAMA_MODEL = "llama3"

# Checked in order; the first non-empty value wins.
_OPENAI_API_KEY_ENV_VARS = ("OPENAI_API_KEY", "LOCAL_MODEL_API_KEY", "OPENROUTER_API_KEY")

_BACKEND_ALIASES: dict[str, BackendKind] = {
    "openai": BackendKind.OPENAI_COMPATIBLE,
    "openai-compatible": BackendKind.OPENAI_COMPATIBLE,
    "openai_compatible": BackendKind.OPENAI_COMPATIBLE,
    "ollama": BackendKind.OLLAMA,
}


def _env(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_backend(value: BackendKind | str) -> BackendKind:
    """Resolve a backend name (or enum member) to a BackendKind."""
    if isinstance(value, BackendKind):
        return value
    key = str(value).strip().lower()
    if key in _BACKEND_ALIASES:
        return _BACKEND_ALIASES[key]
    raise ConfigurationError(
        f"Unknown backend: {value!r}",
        hint="Supported backends: 'openai-compatible', 'ollama'",
    )


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one backend adapter.

    Unset fields are resolved once, at construction, from the environment
    and the backend defaults. Adapters read credentials from here exactly
    once and never re-read the environment afterwards.

    Example:
        config = Config(backend="ollama", model="qwen2.5-coder:7b")
        generator = create_content_generator(config)
    """

    backend: BackendKind | str = BackendKind.OPENAI_COMPATIBLE
    endpoint: str | None = None
    #: Pinned model; wins over any per-request model hint.
    model: str | None = None
    #: Auto-resolved from OPENAI_API_KEY / LOCAL_MODEL_API_KEY / OPENROUTER_API_KEY.
    api_key: str | None = None
    openrouter_site_url: str | None = None
    openrouter_app_name: str | None = None
    client_version: str | None = None
    #: Resolved at construction: the pinned model, else OPENAI_MODEL, else the backend default.
    default_model: str = field(init=False, default="")

    def __post_init__(self) -> None:
        """Resolve environment fallbacks and validate the endpoint."""
        backend = parse_backend(self.backend)
        object.__setattr__(self, "backend", backend)

        if backend is BackendKind.OPENAI_COMPATIBLE:
            endpoint = self.endpoint or _env("OPENAI_BASE_URL") or DEFAULT_OPENAI_ENDPOINT
            if self.api_key is None:
                for env_var in _OPENAI_API_KEY_ENV_VARS:
                    resolved = _env(env_var)
                    if resolved:
                        object.__setattr__(self, "api_key", resolved)
                        break
            if self.openrouter_site_url is None:
                object.__setattr__(
                    self, "openrouter_site_url", _env("OPENROUTER_SITE_URL")
                )
            if self.openrouter_app_name is None:
                object.__setattr__(
                    self, "openrouter_app_name", _env("OPENROUTER_APP_NAME")
                )
        else:
            endpoint = self.endpoint or DEFAULT_OLLAMA_ENDPOINT

        endpoint = normalize_base_url(endpoint)
        parsed = urlparse(endpoint)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ConfigurationError(
                f"No usable endpoint for {backend.value}: {endpoint!r}",
                hint="Pass Config(endpoint='http://host:port') or set LOCAL_MODEL_ENDPOINT.",
            )
        object.__setattr__(self, "endpoint", endpoint)

        if self.model is not None and not self.model.strip():
            object.__setattr__(self, "model", None)

        if self.model:
            default_model = self.model
        elif backend is BackendKind.OPENAI_COMPATIBLE:
            default_model = _env("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL
        else:
            default_model = DEFAULT_OLLAMA_MODEL
        object.__setattr__(self, "default_model", default_model)

        if self.client_version is None:
            object.__setattr__(self, "client_version", _env("CLIENT_VERSION") or "dev")

    @classmethod
    def from_env(cls) -> Config:
        """Build a Config from the LOCAL_MODEL_* environment variables."""
        return cls(
            backend=_env("LOCAL_MODEL_PROVIDER") or BackendKind.OPENAI_COMPATIBLE,
            endpoint=_env("LOCAL_MODEL_ENDPOINT"),
            model=_env("LOCAL_MODEL_MODEL"),
            api_key=_env("LOCAL_MODEL_API_KEY"),
        )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        backend = self.backend.value if isinstance(self.backend, BackendKind) else self.backend
        return (
            f"Config(backend={backend!r}, endpoint={self.endpoint!r}, "
            f"model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None})"
        )

    __repr__ = __str__
