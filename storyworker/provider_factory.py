from typing import Optional

from . import config
from .claude import ClaudeTextAdapter
from .fal import FalImageAdapter
from .luma import LumaImageAdapter, LumaVideoAdapter
from .providers import GenerationKind, ProviderAdapter, ProviderName

ADAPTERS_BY_API_PROVIDER = {
    adapter.api_provider: adapter
    for adapter in (LumaImageAdapter, LumaVideoAdapter, FalImageAdapter, ClaudeTextAdapter)
}


class ProviderFactory:
    """
    Maps each GenerationKind (and the configured image backend) to an adapter.

    Every GenerationKind member must have an entry; for_kind raises
    KeyError otherwise so a new kind cannot silently fall through.
    """

    def __init__(self, image_backend: Optional[str] = None, adapters: Optional[dict] = None):
        backend = ProviderName(image_backend or config.IMAGE_PROVIDER)
        if adapters is None:
            image = FalImageAdapter() if backend == ProviderName.FAL else LumaImageAdapter()
            adapters = {
                GenerationKind.IMAGE: image,
                GenerationKind.VIDEO: LumaVideoAdapter(),
                GenerationKind.TEXT: ClaudeTextAdapter(),
            }
        missing = [kind for kind in GenerationKind if kind not in adapters]
        if missing:
            raise ValueError(f"No provider adapter for kinds: {[k.value for k in missing]}")
        self._adapters: dict[GenerationKind, ProviderAdapter] = adapters
        self._standby: dict[str, ProviderAdapter] = {}

    def for_kind(self, kind: GenerationKind) -> ProviderAdapter:
        return self._adapters[GenerationKind(kind)]

    def for_provider(self, provider: ProviderName) -> ProviderAdapter:
        """Adapter that parses webhooks for the given provider."""
        provider = ProviderName(provider)
        for adapter in self._adapters.values():
            if adapter.name == provider:
                return adapter
        for api_provider, adapter_cls in ADAPTERS_BY_API_PROVIDER.items():
            if adapter_cls.name == provider:
                return self.for_api_provider(api_provider)
        raise KeyError(provider.value)

    def for_api_provider(self, api_provider: str) -> ProviderAdapter:
        """
        Adapter that created a generations row (by its api_provider tag).

        Jobs opened under a different IMAGE_PROVIDER still resolve: an
        adapter for a known tag that is not configured is built on demand.
        """
        for adapter in [*self._adapters.values(), *self._standby.values()]:
            if adapter.api_provider == api_provider:
                return adapter
        adapter_cls = ADAPTERS_BY_API_PROVIDER.get(api_provider)
        if adapter_cls is None:
            raise KeyError(api_provider)
        self._standby[api_provider] = adapter_cls()
        return self._standby[api_provider]
