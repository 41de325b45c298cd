from .base import BaseProvider
from .extractor import ImagePromptEnhancer, LLMProfileExtractor
from .generic_openai import GenericOpenAIProvider

__all__ = [
    "BaseProvider",
    "GenericOpenAIProvider",
    "ImagePromptEnhancer",
    "LLMProfileExtractor",
]
