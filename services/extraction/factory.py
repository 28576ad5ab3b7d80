"""Builds the extraction oracle named by APP_EXTRACTION_PROVIDER.

Both oracles share the same bounded wait (APP_EXTRACTION_TIMEOUT_SECONDS)
and retry budget (APP_EXTRACTION_MAX_ATTEMPTS); what differs is what they
need before the first upload can succeed.
"""

import logging
from collections.abc import Callable, Mapping

from services.extraction.base import ExtractionProvider
from services.extraction.ollama_provider import OllamaExtractionProvider
from services.extraction.openai_provider import OpenAIExtractionProvider
from services.shared.config import Settings

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Settings], ExtractionProvider]

PROVIDERS: dict[str, ProviderFactory] = {
    "openai": OpenAIExtractionProvider,
    "ollama": OllamaExtractionProvider,
}


def readiness_hint(settings: Settings) -> str:
    """What the configured oracle still needs before it can extract."""
    if settings.extraction_provider == "ollama":
        return (
            f"start Ollama at {settings.ollama_base_url} "
            f"and pull the '{settings.ollama_model}' model"
        )
    return "set the OPENAI_API_KEY environment variable"


def create_extraction_provider(
    settings: Settings, providers: Mapping[str, ProviderFactory] = PROVIDERS
) -> ExtractionProvider:
    """Create the extraction oracle selected by configuration.

    An oracle that is not ready yet is still returned: uploads fail per file
    with an extraction error until it is, and the service keeps serving
    mappings, merges and exports in the meantime.

    Args:
        settings: Application settings
        providers: Oracle name to factory (defaults to the built-in oracles)

    Returns:
        Configured extraction provider

    Raises:
        ValueError: If the configured oracle is not in ``providers``
    """
    name = settings.extraction_provider
    factory = providers.get(name)
    if factory is None:
        raise ValueError(
            f"Unknown extraction provider '{name}'; choose one of: {', '.join(sorted(providers))}"
        )

    provider = factory(settings)
    if not provider.is_available():
        logger.warning(
            f"Extraction provider '{name}' is not ready: {readiness_hint(settings)}. "
            f"Uploads will fail until it is."
        )

    logger.info(
        f"Using extraction provider {provider.provider_name} "
        f"(timeout {settings.extraction_timeout_seconds}s, "
        f"up to {settings.extraction_max_attempts} attempts)"
    )
    return provider
