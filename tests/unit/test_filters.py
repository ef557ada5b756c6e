import io

from PIL import Image

from effect_studio.pipeline.filters import (
    FALLBACK_RECIPES,
    DEFAULT_RECIPE,
    recipe_for,
    apply_fallback,
    encode_jpeg,
    load_image,
)
from effect_studio.modules.imagery.effects import DEFAULT_EFFECTS


def test_every_catalog_effect_has_a_recipe():
    for effect in DEFAULT_EFFECTS:
        assert effect.id in FALLBACK_RECIPES


def test_unknown_effect_uses_default_recipe():
    assert recipe_for("not_in_catalog") is DEFAULT_RECIPE


def test_fallback_is_deterministic(image_factory):
    source = image_factory((200, 150), "JPEG")

    first = apply_fallback(source, "vintage_filter")
    second = apply_fallback(source, "vintage_filter")

    assert first.mode == "RGB"
    assert first.size == (200, 150)
    assert first.tobytes() == second.tobytes()


def test_fallback_changes_pixels(image_factory):
    source = image_factory((120, 120), "PNG")

    with Image.open(io.BytesIO(source)) as original:
        original_pixels = original.convert("RGB").tobytes()

    assert apply_fallback(source, "picasso_style").tobytes() != original_pixels


def test_miniature_recipe_bounds_size(image_factory):
    result = apply_fallback(image_factory((1600, 800), "PNG"), "miniature_effect")

    assert result.size == (1024, 512)


def test_fallback_handles_transparency(image_factory):
    source = image_factory((80, 60), "PNG", color=(10, 200, 30, 128), mode="RGBA")

    result = apply_fallback(source, "anime_style")

    assert result.mode == "RGB"
    assert result.size == (80, 60)


def test_encode_jpeg_produces_jpeg(image_factory):
    image = apply_fallback(image_factory((100, 100), "PNG"), "aging_effect")

    data = encode_jpeg(image, quality=90)

    assert data[:2] == b"\xff\xd8"
    with Image.open(io.BytesIO(data)) as decoded:
        assert decoded.format == "JPEG"
        assert decoded.size == (100, 100)


def test_load_image_decodes_fully(image_factory):
    image = load_image(image_factory((30, 20), "WEBP"))

    assert image.size == (30, 20)
