"""Room presets for styled image generation.

Each template places the user's flooring at the centre of a generated
interior; ``{floorType}`` is substituted with the chosen floor.
"""

from dataclasses import dataclass

CUSTOM_STYLE = "custom"
DEFAULT_FLOOR_TYPE = "hardwood"


@dataclass(frozen=True)
class PresetTemplate:
    id: str
    name: str
    description: str
    prompt_template: str

    def render(self, floor_type: str) -> str:
        return self.prompt_template.replace("{floorType}", floor_type)


PRESET_TEMPLATES: list[PresetTemplate] = [
    PresetTemplate(
        id="living-room",
        name="Living Room",
        description="Modern living room interior with the specified flooring",
        prompt_template=(
            "Generate a modern living room interior where the {floorType} flooring is the "
            "focal point. Ensure the floor dominates the composition while maintaining a "
            "balanced, realistic interior design. The floor should cover 40% of the image "
            "area. Include minimal, contemporary furniture that complements the flooring. "
            "Use natural lighting to highlight the floor's texture and color. "
            "Photorealistic style, 8k quality."
        ),
    ),
    PresetTemplate(
        id="kitchen",
        name="Kitchen",
        description="Contemporary kitchen with the specified flooring",
        prompt_template=(
            "Create a contemporary kitchen design featuring {floorType} flooring as the "
            "primary design element. The floor should be prominently displayed, covering "
            "35% of the composition. Include sleek countertops, cabinets, and appliances "
            "that harmonize with the flooring. Natural lighting, wide-angle perspective, "
            "photorealistic rendering, 8k resolution."
        ),
    ),
    PresetTemplate(
        id="bedroom",
        name="Bedroom",
        description="Serene bedroom with the specified flooring",
        prompt_template=(
            "Design a serene bedroom space showcasing {floorType} flooring as the main "
            "visual element. The floor should occupy 40% of the frame. Include essential "
            "bedroom furniture in neutral tones that complement the flooring. Soft, natural "
            "lighting to emphasize floor texture. Photorealistic style, 8k quality."
        ),
    ),
    PresetTemplate(
        id="office",
        name="Office",
        description="Professional office space with the specified flooring",
        prompt_template=(
            "Generate a professional office space with {floorType} flooring as the key "
            "design feature. Floor should cover 35% of the image. Include minimal office "
            "furniture and decor that enhances the flooring's impact. Natural lighting, "
            "wide-angle view, photorealistic rendering, 8k resolution."
        ),
    ),
]

_BY_ID = {preset.id: preset for preset in PRESET_TEMPLATES}


def get_preset(preset_id: str) -> PresetTemplate | None:
    return _BY_ID.get(preset_id)


def build_prompt(
    preset_id: str,
    *,
    floor_type: str = DEFAULT_FLOOR_TYPE,
    custom_prompt: str = "",
) -> tuple[str, str]:
    """Return ``(prompt, style)`` for a generation request.

    A non-empty ``custom_prompt`` wins and marks the style ``custom``.
    Raises ValueError for an unknown preset with no custom prompt.
    """
    if custom_prompt.strip():
        return custom_prompt.strip(), CUSTOM_STYLE
    preset = get_preset(preset_id)
    if preset is None:
        raise ValueError(f"Unknown preset: {preset_id}")
    return preset.render(floor_type.strip() or DEFAULT_FLOOR_TYPE), preset.id
