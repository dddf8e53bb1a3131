from enum import Enum


class PromptOption(str, Enum):
    LIFESTYLE = "lifestyle"
    FASHION = "fashion"
    CUSTOM = "custom"


PROMPT_PRESETS = {
    PromptOption.LIFESTYLE: (
        "Create a photorealistic lifestyle image of the person happily using the "
        "product in a bright, modern living room."
    ),
    PromptOption.FASHION: (
        "Generate a high-fashion studio shot of the person modeling the product "
        "against a clean, minimalist background."
    ),
}

PROMPT_LABELS = {
    PromptOption.LIFESTYLE: "Lifestyle Scene",
    PromptOption.FASHION: "Fashion Shoot",
    PromptOption.CUSTOM: "Custom Prompt",
}

DEFAULT_OPTION = PromptOption.LIFESTYLE


def resolve_prompt(option: PromptOption, current: str, text: str | None = None) -> str:
    """Return the prompt text after switching to `option`.

    Presets always replace the text. Custom keeps whatever was there so the
    user can edit it, unless new text is supplied.
    """
    if option is PromptOption.CUSTOM:
        return current if text is None else text
    return PROMPT_PRESETS[option]
