"""Automatic model selection from message traits."""

import logging

from chatstream.schemas import Attachment
from chatstream.services.llm.registry import ProviderRegistry

logger = logging.getLogger(__name__)

# (provider, model) per query kind, in order of preference
_SIMPLE = [("google", "gemini-2.0-flash"), ("openai", "gpt-4o-mini")]
_HEAVY = [("google", "gemini-1.5-pro"), ("openai", "gpt-4o")]

COMPLEX_QUERY_CHARS = 200


def select_model(
    content: str,
    attachments: list[Attachment],
    requested: tuple[str, str | None],
    registry: ProviderRegistry,
) -> tuple[str, str | None]:
    """Pick a provider and model suited to the message.

    Images, PDFs and long or analytical questions go to the heavier model, everything
    else to the fast one. Falls back to the requested config when no preferred
    provider is registered.
    """
    has_images = any(a.file_type.startswith("image/") for a in attachments)
    has_pdfs = any(a.file_type == "application/pdf" for a in attachments)
    is_complex = "analyze" in content.lower() or len(content) > COMPLEX_QUERY_CHARS

    candidates = _HEAVY if (has_images or has_pdfs or is_complex) else _SIMPLE
    for provider, model in candidates:
        if provider in registry:
            logger.info(
                f"Selected {provider}/{model} "
                f"(images={has_images}, pdfs={has_pdfs}, complex={is_complex})"
            )
            return provider, model

    logger.info(f"No preferred provider registered, keeping {requested[0]}/{requested[1]}")
    return requested
