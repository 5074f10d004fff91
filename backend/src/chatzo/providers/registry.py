"""Model catalogue and provider resolution."""

import logging
from dataclasses import dataclass

from chatzo_models import ModelAbility, ModelDescriptor
from chatzo.config import settings
from chatzo.errors import ChatError
from chatzo.providers.base import ImageModel, LanguageModel
from chatzo.providers.images import OpenAIImageModel
from chatzo.providers.openai_compat import OpenAICompatibleModel

logger = logging.getLogger(__name__)

A = ModelAbility

MODELS: list[ModelDescriptor] = [
    # Google
    ModelDescriptor(
        id="gemini-2.5-pro",
        name="Gemini 2.5 Pro",
        provider="google",
        abilities=[A.REASONING, A.VISION, A.FUNCTION_CALLING, A.PDF, A.EFFORT_CONTROL],
    ),
    ModelDescriptor(
        id="gemini-2.5-flash",
        name="Gemini 2.5 Flash",
        provider="google",
        abilities=[A.VISION, A.FUNCTION_CALLING, A.REASONING, A.PDF, A.EFFORT_CONTROL],
    ),
    ModelDescriptor(
        id="gemini-2.0-flash",
        name="Gemini 2.0 Flash",
        provider="google",
        abilities=[A.VISION, A.FUNCTION_CALLING, A.PDF],
    ),
    # Mistral
    ModelDescriptor(
        id="pixtral-large-latest",
        name="Pixtral Large",
        provider="mistral",
        abilities=[A.VISION, A.FUNCTION_CALLING],
    ),
    ModelDescriptor(
        id="mistral-large-latest",
        name="Mistral Large",
        provider="mistral",
        abilities=[A.FUNCTION_CALLING],
    ),
    ModelDescriptor(
        id="mistral-small-latest",
        name="Mistral Small",
        provider="mistral",
        abilities=[A.FUNCTION_CALLING],
    ),
    # Groq
    ModelDescriptor(
        id="meta-llama/llama-4-scout-17b-16e-instruct",
        name="Llama 4 Scout",
        provider="groq",
        abilities=[A.VISION, A.FUNCTION_CALLING],
    ),
    ModelDescriptor(
        id="llama-3.3-70b-versatile",
        name="Llama 3.3 70b",
        provider="groq",
        abilities=[A.FUNCTION_CALLING],
    ),
    ModelDescriptor(
        id="qwen-qwq-32b",
        name="Qwen QWQ 32b",
        provider="groq",
        abilities=[A.REASONING, A.FUNCTION_CALLING],
    ),
    # OpenRouter
    ModelDescriptor(
        id="deepseek/deepseek-r1-0528:free",
        name="DeepSeek R1 (OpenRouter)",
        provider="openrouter",
        abilities=[A.REASONING, A.FUNCTION_CALLING],
    ),
    # Image models
    ModelDescriptor(
        id="gpt-image-1",
        name="GPT Image 1",
        provider="openai",
        mode="image",
        supported_image_sizes=["1024x1024", "1536x1024", "1024x1536"],
    ),
]


def get_model_by_id(model_id: str) -> ModelDescriptor | None:
    return next((m for m in MODELS if m.id == model_id), None)


def _provider_endpoint(provider: str) -> tuple[str, str]:
    endpoints = {
        "google": (settings.google_base_url, settings.google_api_key),
        "mistral": (settings.mistral_base_url, settings.mistral_api_key),
        "groq": (settings.groq_base_url, settings.groq_api_key),
        "openrouter": (settings.openrouter_base_url, settings.openrouter_api_key),
        "openai": (settings.openai_base_url, settings.openai_api_key),
    }
    if provider not in endpoints:
        raise ValueError(f"Unsupported provider: {provider}")
    return endpoints[provider]


@dataclass
class ResolvedModel:
    """A catalogue entry bound to a concrete provider client."""

    descriptor: ModelDescriptor
    language_model: LanguageModel | None = None
    image_model: ImageModel | None = None

    @property
    def is_image(self) -> bool:
        return self.descriptor.mode == "image"


def resolve_model(model_id: str) -> ResolvedModel:
    """Bind a model id to its provider client.

    Raises:
        ChatError: If the model is not in the catalogue.

    """
    descriptor = get_model_by_id(model_id)
    if not descriptor:
        raise ChatError("bad_request:model", f"Unknown model: {model_id}")

    base_url, api_key = _provider_endpoint(descriptor.provider)
    if descriptor.mode == "image":
        return ResolvedModel(
            descriptor=descriptor,
            image_model=OpenAIImageModel(descriptor.id, base_url, api_key),
        )
    return ResolvedModel(
        descriptor=descriptor,
        language_model=OpenAICompatibleModel(descriptor.id, base_url, api_key),
    )
