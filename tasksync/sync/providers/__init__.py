"""Sync providers and the name-to-provider registry."""

from typing import Callable, TypeVar

from ...config import ProviderConfig
from ...exceptions import ProviderConfigError
from ...storage import KeyValueStore
from .base import SyncProvider
from .document import DocumentStoreProvider
from .http import HttpSyncProvider
from .memory import MemoryProvider, MemoryRemote
from .webdav import WebDAVProvider

ProviderFactory = Callable[[ProviderConfig, KeyValueStore], SyncProvider]

_PROVIDERS: dict[str, ProviderFactory] = {}

F = TypeVar("F", bound=ProviderFactory)


def register_provider(name: str) -> Callable[[F], F]:
    """Register a provider factory under ``name``."""

    def decorator(factory: F) -> F:
        _PROVIDERS[name] = factory
        return factory

    return decorator


def available_providers() -> list[str]:
    return sorted(_PROVIDERS)


def create_provider(config: ProviderConfig, store: KeyValueStore) -> SyncProvider:
    """Build the provider selected by ``config.name``.

    Raises:
        ProviderConfigError: If the name is unknown or options are missing
    """
    factory = _PROVIDERS.get(config.name)
    if factory is None:
        raise ProviderConfigError(
            f"Unsupported sync provider: {config.name} "
            f"(available: {', '.join(available_providers())})"
        )
    return factory(config, store)


_HTTP_OPTIONS = ("max_retries", "retry_delay", "timeout", "transport")


def _http_options(config: ProviderConfig) -> dict:
    return {k: config.options[k] for k in _HTTP_OPTIONS if k in config.options}


@register_provider("document")
def _document_factory(config: ProviderConfig, store: KeyValueStore) -> SyncProvider:
    config.require("url")
    return DocumentStoreProvider(
        store,
        url=config.options["url"],
        api_key=config.options.get("api_key"),
        collection=config.options.get("collection", "todos"),
        document=config.options.get("document", "records"),
        **_http_options(config),
    )


@register_provider("webdav")
def _webdav_factory(config: ProviderConfig, store: KeyValueStore) -> SyncProvider:
    config.require("url")
    return WebDAVProvider(
        store,
        url=config.options["url"],
        username=config.options.get("username"),
        password=config.options.get("password"),
        path=config.options.get("path", "todos.json"),
        **_http_options(config),
    )


@register_provider("memory")
def _memory_factory(config: ProviderConfig, store: KeyValueStore) -> SyncProvider:
    return MemoryProvider(store, remote=config.options.get("remote"))


__all__ = [
    "SyncProvider",
    "HttpSyncProvider",
    "DocumentStoreProvider",
    "WebDAVProvider",
    "MemoryProvider",
    "MemoryRemote",
    "register_provider",
    "create_provider",
    "available_providers",
]
