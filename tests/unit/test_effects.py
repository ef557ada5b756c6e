import pytest

from effect_studio.core.exceptions import UnknownEffect
from effect_studio.modules.imagery.effects import EffectRegistry, DEFAULT_EFFECTS, intensity_directive
from effect_studio.modules.imagery.models import EffectDescriptor


def test_registry_lists_catalog_without_directives(registry):
    effects = registry.list()

    ids = {effect["id"] for effect in effects}
    assert {"anime_style", "picasso_style", "oil_painting", "frida_effect", "miniature_effect"} <= ids
    assert len(effects) == len(DEFAULT_EFFECTS)
    for effect in effects:
        assert set(effect) == {"id", "display_name", "description"}


def test_resolve_returns_descriptor_with_directive(registry):
    effect = registry.resolve("oil_painting")

    assert effect.display_name == "Oil Painting Style"
    assert "Degas" in effect.directive


def test_resolve_unknown_effect():
    registry = EffectRegistry()

    with pytest.raises(UnknownEffect) as exc_info:
        registry.resolve("does_not_exist")

    assert exc_info.value.code == 400
    assert exc_info.value.error_code == "UnknownEffect"
    assert "does_not_exist" not in registry


def test_duplicate_effect_ids_rejected():
    effect = EffectDescriptor(id="twice", display_name="Twice", description="", directive="x")

    with pytest.raises(ValueError):
        EffectRegistry([effect, effect])


def test_registry_is_read_only(registry):
    with pytest.raises(TypeError):
        registry._effects["new_effect"] = DEFAULT_EFFECTS[0]


@pytest.mark.parametrize(
    "intensity, wording",
    [
        (0.9, "very dramatic and exaggerated"),
        (0.8, "moderate but noticeable"),
        (0.6, "moderate but noticeable"),
        (0.5, "subtle but visible"),
        (0.0, "subtle but visible"),
    ],
)
def test_intensity_directive_wording(intensity, wording):
    directive = intensity_directive("Paint it.", intensity)

    assert directive.startswith("Paint it.")
    assert wording in directive
    assert f"({round(intensity * 100)}%)" in directive


def test_intensity_directive_none_leaves_directive_unchanged():
    assert intensity_directive("Paint it.", None) == "Paint it."
