"""
Inference Providers

Synchronous (fal.ai) and submit-and-poll (Replicate) synthesis adapters
behind one interface, selected once per process.
"""

from airchives.engines.providers.base import SynthesisProvider, SynthesisRequest, SynthesisResult, POSES
from airchives.engines.providers.factory import resolve_provider, select_provider

__all__ = [
    "SynthesisProvider",
    "SynthesisRequest",
    "SynthesisResult",
    "POSES",
    "resolve_provider",
    "select_provider",
]
