"""
Style library — the hidden prompt fragments behind each ad style.
Users pick a style, we inject the visual modifiers and fallback copy.
"""

STYLES = {
    "cinematic": {
        "modifiers": (
            "cinematic lighting, film grain, dramatic shadows, "
            "professional color grading, 4k quality"
        ),
        "headline": "{brand}: The Story Starts Here",
        "subheadline": "A closer look at {product}, told like never before",
        "cta": "Watch Now",
        "colors": "#1F2937, #F59E0B",
        "mood": "Dramatic, Immersive, Epic",
        "audience": "Film lovers and story-driven shoppers",
    },
    "minimal": {
        "modifiers": (
            "clean minimalist design, white space, elegant typography, modern aesthetic"
        ),
        "headline": "{brand}. Simply Better.",
        "subheadline": "{product}, with nothing you don't need",
        "cta": "Discover",
        "colors": "#FFFFFF, #111827",
        "mood": "Calm, Clean, Modern",
        "audience": "Design-minded minimalists",
    },
    "bold": {
        "modifiers": (
            "vibrant colors, high contrast, dynamic composition, "
            "energetic motion, impactful visuals"
        ),
        "headline": "{brand}: Make Some Noise",
        "subheadline": "{product} that refuses to blend in",
        "cta": "Get Yours",
        "colors": "#EF4444, #FACC15",
        "mood": "Energetic, Loud, Confident",
        "audience": "Trend-setters who stand out",
    },
    "corporate": {
        "modifiers": (
            "professional business look, clean structured layout, "
            "trustworthy blue tones, polished"
        ),
        "headline": "{brand} — Built for Business",
        "subheadline": "{product} your team can rely on",
        "cta": "Learn More",
        "colors": "#1E3A8A, #E5E7EB",
        "mood": "Trustworthy, Reliable, Professional",
        "audience": "Business decision makers",
    },
    "playful": {
        "modifiers": (
            "colorful fun animation style, whimsical youthful energy, bright warm palette"
        ),
        "headline": "Say Hello to {brand}!",
        "subheadline": "{product} that makes every day more fun",
        "cta": "Try It",
        "colors": "#EC4899, #22D3EE",
        "mood": "Fun, Cheerful, Youthful",
        "audience": "Young, fun-loving shoppers",
    },
    "luxury": {
        "modifiers": (
            "golden accents, rich textures, elegant premium feel, "
            "sophisticated dark background, refined"
        ),
        "headline": "{brand} — Redefine Excellence",
        "subheadline": "Where premium quality meets modern innovation",
        "cta": "Shop Now",
        "colors": "#7C3AED, #6366F1",
        "mood": "Premium, Bold, Modern",
        "audience": "Style-conscious professionals",
    },
}

DEFAULT_STYLE = "luxury"

# Appended to every image prompt
QUALITY_MODIFIERS = (
    "professional advertisement photography, commercial quality, studio lighting, "
    "sharp focus, high resolution, 8k, no text, no words, no letters, no watermark"
)


def get_style(style_id: str) -> dict:
    """Look up a style, falling back to the default."""
    return STYLES.get(style_id) or STYLES[DEFAULT_STYLE]


def get_modifiers(style_id: str) -> str:
    return get_style(style_id)["modifiers"]
