"""
Deterministic Fallback Filters

Non-generative degraded mode. Each effect id maps to a fixed recipe of
Pillow operations (resize, modulate, blur, sharpen, gamma, linear), so the
same source and effect always produce the same output.
"""

import io
from dataclasses import dataclass
from typing import Dict, Optional

from PIL import Image, ImageEnhance, ImageFilter, ImageOps


@dataclass(frozen=True)
class FallbackRecipe:
    """Filter parameters; neutral values leave the image unchanged."""
    max_dimension: Optional[int] = None
    brightness: float = 1.0
    saturation: float = 1.0
    hue_degrees: int = 0
    blur_radius: float = 0.0
    sharpen_percent: int = 0
    gamma: float = 1.0
    linear_a: float = 1.0
    linear_b: float = 0.0
    tint: Optional[tuple] = None  # (dark RGB, light RGB) for duotone effects


DEFAULT_RECIPE = FallbackRecipe(brightness=1.1, saturation=1.2, sharpen_percent=80)

FALLBACK_RECIPES: Dict[str, FallbackRecipe] = {
    "anime_style": FallbackRecipe(
        max_dimension=1536,
        brightness=1.15,
        saturation=1.55,
        hue_degrees=8,
        blur_radius=0.6,
        sharpen_percent=180,
        gamma=1.15,
    ),
    "picasso_style": FallbackRecipe(
        brightness=1.05,
        saturation=1.8,
        hue_degrees=20,
        blur_radius=0.9,
        sharpen_percent=200,
        gamma=1.3,
        linear_a=1.4,
        linear_b=-51.2,
    ),
    "oil_painting": FallbackRecipe(
        brightness=1.05,
        saturation=1.35,
        blur_radius=1.4,
        sharpen_percent=120,
        gamma=1.1,
        linear_a=1.15,
        linear_b=-19.2,
    ),
    "frida_effect": FallbackRecipe(
        brightness=1.08,
        saturation=1.7,
        hue_degrees=-10,
        sharpen_percent=150,
        gamma=1.2,
        linear_a=1.2,
        linear_b=-25.6,
    ),
    "miniature_effect": FallbackRecipe(
        max_dimension=1024,
        brightness=1.12,
        saturation=1.45,
        sharpen_percent=220,
        gamma=1.05,
        linear_a=1.25,
        linear_b=-32.0,
    ),
    "vintage_filter": FallbackRecipe(
        brightness=1.05,
        saturation=0.55,
        blur_radius=0.4,
        gamma=1.1,
        linear_a=0.85,
        linear_b=24.0,
        tint=((52, 32, 20), (255, 236, 200)),
    ),
    "aging_effect": FallbackRecipe(
        brightness=0.85,
        saturation=0.6,
        sharpen_percent=90,
        gamma=1.45,
        linear_a=0.82,
        linear_b=26.0,
    ),
}


def recipe_for(effect_id: str) -> FallbackRecipe:
    return FALLBACK_RECIPES.get(effect_id, DEFAULT_RECIPE)


def _lut(func):
    table = [max(0, min(255, round(func(value)))) for value in range(256)]
    return table * 3


def _shift_hue(image: Image.Image, degrees: int) -> Image.Image:
    hsv = image.convert("HSV")
    h, s, v = hsv.split()
    offset = round(degrees / 360 * 255)
    h = h.point(lambda value: (value + offset) % 256)
    return Image.merge("HSV", (h, s, v)).convert("RGB")


def apply_recipe(image: Image.Image, recipe: FallbackRecipe) -> Image.Image:
    """Run a recipe over an image. Order is fixed: resize, modulate, blur, sharpen, gamma, linear, tint."""
    image = ImageOps.exif_transpose(image).convert("RGB")

    if recipe.max_dimension and max(image.size) > recipe.max_dimension:
        image.thumbnail((recipe.max_dimension, recipe.max_dimension), Image.Resampling.LANCZOS)

    if recipe.brightness != 1.0:
        image = ImageEnhance.Brightness(image).enhance(recipe.brightness)
    if recipe.saturation != 1.0:
        image = ImageEnhance.Color(image).enhance(recipe.saturation)
    if recipe.hue_degrees:
        image = _shift_hue(image, recipe.hue_degrees)

    if recipe.blur_radius > 0:
        image = image.filter(ImageFilter.GaussianBlur(radius=recipe.blur_radius))
    if recipe.sharpen_percent > 0:
        image = image.filter(ImageFilter.UnsharpMask(radius=2, percent=recipe.sharpen_percent, threshold=3))

    if recipe.gamma != 1.0:
        inverse = 1.0 / recipe.gamma
        image = image.point(_lut(lambda v: 255 * (v / 255) ** inverse))
    if recipe.linear_a != 1.0 or recipe.linear_b:
        image = image.point(_lut(lambda v: recipe.linear_a * v + recipe.linear_b))

    if recipe.tint:
        dark, light = recipe.tint
        toned = ImageOps.colorize(ImageOps.grayscale(image), black=dark, white=light)
        image = Image.blend(image, toned, 0.5)

    return image


def apply_fallback(image_bytes: bytes, effect_id: str) -> Image.Image:
    """Decode source bytes and apply the effect's fallback recipe."""
    with Image.open(io.BytesIO(image_bytes)) as source:
        source.load()
        return apply_recipe(source, recipe_for(effect_id))


def encode_jpeg(image: Image.Image, quality: int = 90) -> bytes:
    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


def load_image(image_bytes: bytes) -> Image.Image:
    """Fully decode image bytes. Raises OSError (or a subclass) if undecodable."""
    with Image.open(io.BytesIO(image_bytes)) as image:
        image.load()
        return ImageOps.exif_transpose(image)
