"""
Prompt Builder

Pure function from model attributes, background and optional overrides to the
(prompt, negative prompt) pair sent to the synthesis provider.
"""

from typing import Dict, NamedTuple, Optional, Sequence, Union

from airchives.modules.generations.models import Background

BACKGROUND_PHRASES: Dict[Background, str] = {
    Background.WHITE: "clean white studio background, professional lighting",
    Background.GREY: "neutral grey studio background, soft lighting",
    Background.BEIGE: "warm beige studio background, natural lighting",
    Background.STREETWEAR: "urban street background, city setting, natural lighting",
    Background.INDOOR_LOFT: "modern loft interior, warm lighting, lifestyle setting",
}

QUALITY_SUFFIX = "ultra realistic, 8k, detailed textures, professional photography, fashion magazine quality"

DEFAULT_NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, deformed, disfigured, bad anatomy, extra limbs, "
    "missing limbs, floating limbs, disconnected limbs, mutation, mutated, ugly, disgusting, "
    "amputation, low resolution, jpeg artifacts, compression artifacts, noise, grain, film grain, "
    "blurry, out of focus, poorly drawn, bad art, beginner, amateur, distorted face"
)


class ModelAttributes(NamedTuple):
    name: str
    body_type: str
    ethnicity: str
    style_tags: Sequence[str]


class PromptPair(NamedTuple):
    prompt: str
    negative_prompt: str


def describe_model(model: ModelAttributes) -> str:
    return (
        f"professional fashion photography of {model.name} wearing "
        f"{', '.join(model.style_tags)} clothing, {model.body_type} build, "
        f"{model.ethnicity} features, high fashion, editorial style"
    )


def build_prompt(
    model: ModelAttributes,
    background: Union[Background, str],
    custom_prompt: Optional[str] = None,
    negative_prompt: Optional[str] = None
) -> PromptPair:
    """
    Assemble the synthesis prompt.

    A non-blank custom prompt replaces the model description; the background
    phrase and quality suffix are always appended. The negative prompt falls
    back to DEFAULT_NEGATIVE_PROMPT when no override is given.
    """
    base = custom_prompt.strip() if custom_prompt and custom_prompt.strip() else describe_model(model)
    phrase = BACKGROUND_PHRASES[Background(background)]

    return PromptPair(
        prompt=f"{base}, {phrase}, {QUALITY_SUFFIX}",
        negative_prompt=negative_prompt.strip() if negative_prompt and negative_prompt.strip() else DEFAULT_NEGATIVE_PROMPT
    )
