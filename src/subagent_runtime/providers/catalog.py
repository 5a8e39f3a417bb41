"""Per-provider model catalog with alias resolution."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True, slots=True)
class ModelEntry:
    model_id: str
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ProviderCatalog:
    provider: str
    default_model: str
    models: tuple[ModelEntry, ...]

    def lookup(self, name: str) -> str | None:
        """Return the canonical model id for a model id or alias, if known."""
        wanted = name.strip().lower()
        for entry in self.models:
            if entry.model_id.lower() == wanted or wanted in entry.aliases:
                return entry.model_id
        return None

    def owns_prefix(self, name: str) -> bool:
        lowered = name.strip().lower()
        return any(lowered.startswith(prefix) for prefix in _FAMILY_PREFIXES.get(self.provider, ()))


MODEL_CATALOGS: Final[Mapping[str, ProviderCatalog]] = {
    "anthropic": ProviderCatalog(
        provider="anthropic",
        default_model="claude-sonnet-4-20250514",
        models=(
            ModelEntry("claude-sonnet-4-20250514", ("sonnet", "claude", "default")),
            ModelEntry("claude-3-haiku-20240307", ("haiku", "fast")),
            ModelEntry("claude-opus-4-20250514", ("opus", "smart")),
        ),
    ),
    "openai": ProviderCatalog(
        provider="openai",
        default_model="gpt-4o",
        models=(
            ModelEntry("gpt-4o", ("gpt4", "gpt")),
            ModelEntry("gpt-4o-mini", ("gpt-mini", "gpt-fast")),
        ),
    ),
    "groq": ProviderCatalog(
        provider="groq",
        default_model="llama-3.3-70b-versatile",
        models=(
            ModelEntry("llama-3.3-70b-versatile", ("llama", "groq")),
            ModelEntry("mixtral-8x7b-32768", ("mixtral",)),
        ),
    ),
    "google": ProviderCatalog(
        provider="google",
        default_model="gemini-2.0-flash",
        models=(
            ModelEntry("gemini-2.0-flash", ("gemini", "flash")),
            ModelEntry("gemini-1.5-pro", ("gemini-pro",)),
        ),
    ),
}

# Model id prefixes that identify a provider family even for ids missing from the catalog.
_FAMILY_PREFIXES: Final[Mapping[str, tuple[str, ...]]] = {
    "anthropic": ("claude-",),
    "openai": ("gpt-", "o1", "o3", "o4"),
    "groq": ("llama-", "mixtral-", "gemma"),
    "google": ("gemini-",),
}


def resolve_model(provider: str, requested: str | None, *, default: str | None = None) -> str:
    """Resolve ``requested`` to a model id the given provider can serve.

    Aliases map to canonical ids. Ids belonging to another provider's family
    fall back to ``default`` (or the catalog default) so a run's preferred
    model never reaches an incompatible backend. Unknown ids are passed through.
    """
    catalog = MODEL_CATALOGS.get(provider)
    fallback = default or (catalog.default_model if catalog is not None else None)
    if requested is None or not requested.strip():
        if fallback is None:
            raise ValueError(f"no model requested and no default model for provider {provider!r}")
        return fallback
    if catalog is None:
        return requested.strip()

    own = catalog.lookup(requested)
    if own is not None:
        return own
    if catalog.owns_prefix(requested):
        return requested.strip()

    for other in MODEL_CATALOGS.values():
        if other.provider == provider:
            continue
        if other.lookup(requested) is not None or other.owns_prefix(requested):
            return fallback if fallback is not None else catalog.default_model
    return requested.strip()


def default_model_for(provider: str) -> str | None:
    catalog = MODEL_CATALOGS.get(provider)
    return catalog.default_model if catalog is not None else None


__all__ = [
    "MODEL_CATALOGS",
    "ModelEntry",
    "ProviderCatalog",
    "default_model_for",
    "resolve_model",
]
