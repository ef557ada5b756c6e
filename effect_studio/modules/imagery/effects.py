"""
Effect Registry

Static catalog of effects loaded once at import time. Directives are the
instructions handed to the generative transformer and stay server-side.
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Iterable, Optional

from effect_studio.core.exceptions import UnknownEffect
from effect_studio.modules.imagery.models import EffectDescriptor


DEFAULT_EFFECTS = (
    EffectDescriptor(
        id="anime_style",
        display_name="Anime Style",
        description="Transform portrait into pretty anime style",
        directive="Using the provided image of this person, transform this portrait into pretty, anime style.",
    ),
    EffectDescriptor(
        id="picasso_style",
        display_name="Picasso Style",
        description="Transform portrait into Picasso painting style",
        directive="Transform the provided portrait into the style of a Picasso painting.",
    ),
    EffectDescriptor(
        id="oil_painting",
        display_name="Oil Painting Style",
        description="Transform portrait into Degas oil painting style",
        directive="Transform the provided portrait into the style of a Degas oil painting.",
    ),
    EffectDescriptor(
        id="frida_effect",
        display_name="Frida Style",
        description="Transform portrait into Frida Kahlo painting style",
        directive="Using the provided image of this person, transform this portrait into Frida Kahlo painting style.",
    ),
    EffectDescriptor(
        id="miniature_effect",
        display_name="Miniature Effect",
        description="Transform into a collectible figure",
        directive=(
            "Create a 1/7 scale commercialized figure of the character in the illustration, "
            "in a realistic style and environment. Place the figure on a computer desk, using a "
            "circular transparent acrylic base without any text. On the computer screen, display "
            "the ZBrush modeling process of the figure. Next to the computer screen, place a "
            "BANDAI-style toy packaging box printed with the original artwork."
        ),
    ),
    EffectDescriptor(
        id="vintage_filter",
        display_name="Vintage Photo",
        description="Faded, warm-toned film photograph look",
        directive=(
            "Using the provided image, recreate it as a faded vintage film photograph from the 1970s "
            "with warm tones, soft contrast and subtle grain. Keep the composition and subject unchanged."
        ),
    ),
    EffectDescriptor(
        id="aging_effect",
        display_name="Aging Effect",
        description="Show the person decades older",
        directive=(
            "Using the provided image of this person, show them realistically aged by about thirty "
            "years while keeping their identity, pose and background."
        ),
    ),
)


def intensity_directive(directive: str, intensity: Optional[float]) -> str:
    """Append intensity wording to a directive; None leaves it unchanged."""
    if intensity is None:
        return directive

    if intensity > 0.8:
        wording = "very dramatic and exaggerated"
    elif intensity > 0.5:
        wording = "moderate but noticeable"
    else:
        wording = "subtle but visible"

    return (
        f"{directive} Apply this transformation with {wording} intensity "
        f"({round(intensity * 100)}%) while maintaining image quality."
    )


class EffectRegistry:
    """Immutable mapping of effect id to descriptor."""

    def __init__(self, effects: Iterable[EffectDescriptor] = DEFAULT_EFFECTS):
        table: Dict[str, EffectDescriptor] = {}
        for effect in effects:
            if effect.id in table:
                raise ValueError(f"Duplicate effect id: {effect.id}")
            table[effect.id] = effect
        self._effects: Mapping[str, EffectDescriptor] = MappingProxyType(table)

    def list(self) -> List[Dict[str, str]]:
        """Public view of every effect (directive withheld)."""
        return [effect.public_view() for effect in self._effects.values()]

    def resolve(self, effect_id: str) -> EffectDescriptor:
        try:
            return self._effects[effect_id]
        except KeyError:
            raise UnknownEffect(effect_id) from None

    def __contains__(self, effect_id: object) -> bool:
        return effect_id in self._effects

    def __len__(self) -> int:
        return len(self._effects)
