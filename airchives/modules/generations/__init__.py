"""
Generations Module

Generation status tracking and output image records.
"""

from airchives.modules.generations.models import Generation, GenerationStatus, OutputImage

__all__ = ["Generation", "GenerationStatus", "OutputImage"]
