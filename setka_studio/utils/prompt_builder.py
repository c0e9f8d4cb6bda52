"""Prompt composition from UI selections.

Every prompt is assembled from an ordered table of ``(predicate, template)``
rules. Each rule yields one optional clause; clauses are grouped and joined in
a fixed order, so the same selections always produce the same text.
"""

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from itertools import groupby
from operator import attrgetter
from typing import Callable, Dict, Generic, List, Sequence, Tuple, TypeVar
from pydantic import BaseModel, Field, field_validator

from setka_studio.core.models import AspectRatio

logger = logging.getLogger(__name__)

FALLBACK_INSTRUCTION = (
    "Slightly enhance the provided image, improving quality without changing the content."
)

NO_PREFERENCE = "no preference"
RANDOM = "random"
SENTINEL_VALUES = frozenset({NO_PREFERENCE, RANDOM})


class ClauseGroup(IntEnum):
    """Clause groups in output order."""
    SHOT_TYPE = 1
    SUBJECT = 2
    SCENE = 3
    CAPTURE = 4
    EFFECTS = 5
    ASPECT_RATIO = 6
    VARIATION = 7
    NEGATIVE = 8


@dataclass(frozen=True)
class PromptClause:
    """One optional piece of a prompt."""
    group: ClauseGroup
    text: str
    enabled: bool = True

    @property
    def is_active(self) -> bool:
        """Whether the clause makes it into the prompt."""
        if not self.enabled:
            return False
        text = _clean(self.text)
        return bool(text) and text.lower() not in SENTINEL_VALUES


def _clean(piece: str) -> str:
    """Trim whitespace and trailing separators."""
    return piece.strip().rstrip(".,;").strip()


def build_prompt(base_template: str, clauses: Sequence[PromptClause]) -> str:
    """Compose a prompt from a base template and optional clauses.

    Clauses are stably ordered by group. Clauses in the same group are joined
    with ", " and groups are joined with ". ". If neither the base template
    nor any clause has content, the fixed fallback instruction is returned so
    providers never receive an empty prompt.

    Args:
        base_template: Leading text (free-text prompt or a fixed base prompt)
        clauses: Optional clauses in any order

    Returns:
        The composed prompt, ending with a period
    """
    pieces: List[str] = []

    base = _clean(base_template)
    if base:
        pieces.append(base)

    active = sorted((c for c in clauses if c.is_active), key=attrgetter("group"))
    for _, members in groupby(active, key=attrgetter("group")):
        segment = ", ".join(_clean(clause.text) for clause in members)
        pieces.append(segment)

    if not pieces:
        logger.debug("No prompt content selected, using fallback instruction")
        return FALLBACK_INSTRUCTION

    return ". ".join(pieces) + "."


S = TypeVar("S")


@dataclass(frozen=True)
class ClauseRule(Generic[S]):
    """A ``(predicate, template)`` pair evaluated against selections."""
    group: ClauseGroup
    predicate: Callable[[S], bool]
    template: Callable[[S], str]

    def evaluate(self, selections: S) -> PromptClause:
        """Turn the rule into a clause for the given selections."""
        if not self.predicate(selections):
            return PromptClause(self.group, "", enabled=False)
        return PromptClause(self.group, self.template(selections))


def evaluate_rules(rules: Sequence[ClauseRule[S]], selections: S) -> List[PromptClause]:
    """Evaluate a rule table in order."""
    return [rule.evaluate(selections) for rule in rules]


# ---------------------------------------------------------------------------
# Option enums
# ---------------------------------------------------------------------------

class ShotType(Enum):
    """Framing for portrait adaptation."""
    CLOSE_UP = "close_up"
    WAIST_UP = "waist_up"
    KNEE_UP = "knee_up"
    FULL_BODY = "full_body"


class ClothingOption(Enum):
    """Clothing presets for portrait adaptation."""
    CLASSIC = "classic"
    LEISURE = "leisure"
    BEACH = "beach"
    CUSTOM = "custom"
    UPLOAD = "upload"


class BackgroundOption(Enum):
    """Background presets for portrait adaptation."""
    STUDIO_GRAY = "studio_gray"
    STUDIO_BRIGHT = "studio_bright"
    STUDIO_DIM = "studio_dim"
    PARK = "park"
    OFFICE = "office"
    CAFE = "cafe"
    BAR = "bar"
    CUSTOM = "custom"
    UPLOAD = "upload"


class PhotoStyle(Enum):
    """Style presets for photo generation."""
    SUPER_REALISM = "super_realism"
    MACRO = "macro"
    PORTRAIT = "portrait"
    ANIME = "anime"
    OIL_PAINTING = "oil_painting"
    CUSTOM = "custom"
    UPLOAD = "upload"


class LightingStyle(Enum):
    """Lighting presets for photo generation."""
    CINEMATIC = "cinematic"
    STUDIO = "studio"
    GOLDEN_HOUR = "golden_hour"
    REMBRANDT = "rembrandt"
    SOFT = "soft"
    NEON = "neon"
    CUSTOM = "custom"


class FilmGrain(Enum):
    NONE = NO_PREFERENCE
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


class Blur(Enum):
    NONE = NO_PREFERENCE
    BOKEH = "bokeh"
    MOTION = "motion"
    TILT_SHIFT = "tilt_shift"


class Vignette(Enum):
    NONE = NO_PREFERENCE
    LIGHT = "light"
    STRONG = "strong"


class EditStyle(Enum):
    """Style presets for image editing."""
    PHOTO_REALISM = "photo_realism"
    ANIME = "anime"
    CYBERPUNK = "cyberpunk"
    BLACK_AND_WHITE = "black_and_white"
    OIL_PAINTING = "oil_painting"
    WATERCOLOR = "watercolor"
    PENCIL_SKETCH = "pencil_sketch"
    STEAMPUNK = "steampunk"
    FANTASY = "fantasy"
    POP_ART = "pop_art"
    CUSTOM = "custom"
    UPLOAD = "upload"


class Gender(Enum):
    MAN = "man"
    WOMAN = "woman"


class FaceShotType(Enum):
    """Framing for avatar (face) generation."""
    CLOSE_UP = "close_up"
    CHEST_UP = "chest_up"
    WAIST_UP = "waist_up"
    KNEE_UP = "knee_up"
    FULL_BODY = "full_body"


class OutputMode(Enum):
    """Which variation set a portrait batch uses."""
    ANGLES = "angles"
    EXPRESSIONS = "expressions"


# ---------------------------------------------------------------------------
# Prompt fragments
# ---------------------------------------------------------------------------

class PromptLibrary:
    """Fixed prompt fragments keyed by option."""

    PORTRAIT_BASE_PROMPT = (
        "A high-quality, photorealistic image that accurately preserves the identity of "
        "the person in the uploaded photo. Aim for fine details, such as realistic skin "
        "texture, individual hair strands, and natural eye reflections. Use soft, cinematic "
        "lighting for depth, with a sharp focus on the subject and a natural bokeh effect. "
        "The style should be that of a professional photograph, not digital art. "
        "8k resolution preferred."
    )

    IMAGE_VARIATION_BASE_PROMPT = (
        "The provided image is a reference. Create a new, photorealistic, high-resolution 8k "
        "image based on it, guided by the text prompt. It's very important that the identity, "
        "face, and key features of any person in the reference image are accurately preserved. "
        "The final image should look like a professional photograph with great detail, "
        "avoiding any digital art or cartoonish style."
    )

    CREATIVE_JUDGMENT = "Use your creative judgment to interpret the image."

    EDIT_BASE_PROMPT = "Edit the provided image"

    SHOT_TYPES: Dict[ShotType, str] = {
        ShotType.CLOSE_UP: (
            "A tight close-up portrait, focusing strictly on the face from the top of the head "
            "to just below the chin. Only the head and neck should be visible."
        ),
        ShotType.WAIST_UP: (
            "A medium shot of the person from the waist up, clearly showing their stomach, "
            "torso, shoulders, and head completely."
        ),
        ShotType.KNEE_UP: (
            "A medium-long shot of the person from the knees up, clearly showing their legs "
            "from the knees, torso, arms, and head completely."
        ),
        ShotType.FULL_BODY: (
            "A full-body shot of the person, showing them standing from head to toe. The "
            "person's feet must be clearly visible, and they are wearing simple, plain shoes."
        ),
    }

    CLOTHING: Dict[ClothingOption, str] = {
        ClothingOption.CLASSIC: (
            "The person is dressed formally. If a man, he is wearing a classic black suit with "
            "a white shirt and no tie. If a woman, she is wearing a classic black suit with a skirt."
        ),
        ClothingOption.LEISURE: "The person is wearing a white tight-fitting t-shirt and blue jeans.",
        ClothingOption.BEACH: (
            "The person is dressed for the beach. If a man, he is wearing white beach shorts. "
            "If a woman, she is wearing a white triangle top bikini."
        ),
    }

    BACKGROUNDS: Dict[BackgroundOption, str] = {
        BackgroundOption.STUDIO_GRAY: "On a solid, neutral gray studio background.",
        BackgroundOption.STUDIO_BRIGHT: "In a brightly lit professional photo studio with clean lighting.",
        BackgroundOption.STUDIO_DIM: "In a professional photo studio with soft, dim, atmospheric lighting.",
        BackgroundOption.PARK: "Outdoors in a city park with a soft focus background, sunny day.",
        BackgroundOption.OFFICE: "In a modern office space with large windows and a blurred city view.",
        BackgroundOption.CAFE: "In a cozy café with a warmly lit, blurred background.",
        BackgroundOption.BAR: "In a dimly lit, atmospheric bar with subtle neon lights in the background.",
    }

    ASPECT_RATIOS: Dict[AspectRatio, str] = {
        AspectRatio.SQUARE: "The final output image MUST be a perfect square (1:1 aspect ratio).",
        AspectRatio.LANDSCAPE: (
            "The final output image MUST be in a wide landscape orientation (16:9 aspect ratio)."
        ),
        AspectRatio.PORTRAIT: (
            "The final output image MUST be in a tall portrait orientation (9:16 aspect ratio)."
        ),
        AspectRatio.STANDARD_LANDSCAPE: (
            "The final output image MUST be in a standard landscape orientation (4:3 aspect ratio)."
        ),
        AspectRatio.STANDARD_PORTRAIT: (
            "The final output image MUST be in a standard portrait orientation (3:4 aspect ratio)."
        ),
    }

    VARIATION_STRENGTHS: Dict[int, str] = {
        1: (
            "Make only minimal, subtle changes to the original image, introducing less than 10% "
            "creative variation. Stick as closely as possible to the source."
        ),
        2: "Introduce minor creative variations while keeping the result very close to the original image.",
        3: (
            "Apply some noticeable creative changes, but the core composition and subject should "
            "remain clearly derived from the original."
        ),
        4: (
            "Add a moderate level of creative interpretation. The output should be a clear "
            "variation but still strongly resemble the original."
        ),
        5: (
            "Balance the original image and creative freedom equally (50/50). Create a distinct "
            "variation that is clearly inspired by the source."
        ),
        6: (
            "Lean more towards creative interpretation, using the original image as a strong "
            "inspiration for a new composition."
        ),
        7: (
            "Introduce significant creative changes. The link to the original image should be "
            "conceptual rather than literal."
        ),
        8: "Take the core concepts from the original image and re-imagine them in a substantially different way.",
        9: (
            "Use the original image as a starting point for a highly imaginative and creative new "
            "picture, with very few direct similarities."
        ),
        10: (
            "Use maximum creative fantasy. The final image should be a completely new artistic "
            "interpretation, only loosely inspired by the themes of the original photo."
        ),
    }

    PHOTO_STYLES: Dict[PhotoStyle, str] = {
        PhotoStyle.SUPER_REALISM: (
            "hyperrealistic photograph, ultra-detailed, 8k, professional photography, sharp focus, high quality"
        ),
        PhotoStyle.MACRO: (
            "macro photography, extreme close-up, detailed, sharp focus on the subject with a "
            "blurred background (bokeh)"
        ),
        PhotoStyle.PORTRAIT: (
            "studio portrait, professional portrait photography, soft lighting, sharp focus on the eyes"
        ),
        PhotoStyle.ANIME: (
            "anime style, vibrant colors, clean lines, cel shading, detailed background, trending on pixiv"
        ),
        PhotoStyle.OIL_PAINTING: (
            "oil painting, textured brush strokes, rich colors, classic art style, masterpiece"
        ),
    }

    LIGHTING: Dict[LightingStyle, str] = {
        LightingStyle.CINEMATIC: "cinematic lighting, dramatic shadows, high contrast, moody atmosphere",
        LightingStyle.STUDIO: "professional studio 3-point lighting setup, clean, well-lit subject",
        LightingStyle.GOLDEN_HOUR: "golden hour lighting, warm, soft, long shadows, sunset",
        LightingStyle.REMBRANDT: (
            "Rembrandt lighting, strong side light, triangle of light on the cheek, dramatic and moody"
        ),
        LightingStyle.SOFT: "soft diffused lighting, overcast day, minimal shadows, flattering light",
        LightingStyle.NEON: (
            "neon lighting, vibrant pink and blue lights, cyberpunk aesthetic, reflective surfaces"
        ),
    }

    FILM_GRAIN: Dict[FilmGrain, str] = {
        FilmGrain.LIGHT: "subtle film grain",
        FilmGrain.MEDIUM: "medium film grain",
        FilmGrain.HEAVY: "heavy film grain, vintage film look",
    }

    BLUR: Dict[Blur, str] = {
        Blur.BOKEH: "soft background blur, beautiful bokeh",
        Blur.MOTION: "motion blur, dynamic movement",
        Blur.TILT_SHIFT: "tilt-shift effect, miniature faking",
    }

    VIGNETTE: Dict[Vignette, str] = {
        Vignette.LIGHT: "light vignette effect",
        Vignette.STRONG: "strong, dramatic vignette effect",
    }

    EDIT_STYLES: Dict[EditStyle, str] = {
        EditStyle.PHOTO_REALISM: (
            "Make the image look like a hyperrealistic photograph, ultra-detailed, 8k, "
            "professional photography, sharp focus."
        ),
        EditStyle.ANIME: "Transform the image into an anime style, with vibrant colors, clean lines, and cel shading.",
        EditStyle.CYBERPUNK: (
            "Give the image a cyberpunk aesthetic, with neon lighting, futuristic elements, and "
            "a gritty, high-tech feel."
        ),
        EditStyle.BLACK_AND_WHITE: (
            "Convert the image to a dramatic black and white photograph, with high contrast and deep blacks."
        ),
        EditStyle.OIL_PAINTING: (
            "Transform the image to look like a classic oil painting, with visible textured brush "
            "strokes and rich colors."
        ),
        EditStyle.WATERCOLOR: "Transform the image into a watercolor painting, with soft edges and transparent colors.",
        EditStyle.PENCIL_SKETCH: "Convert the image into a detailed pencil sketch, with fine lines and shading.",
        EditStyle.STEAMPUNK: (
            "Give the image a steampunk aesthetic, with gears, cogs, brass, and Victorian-era technology."
        ),
        EditStyle.FANTASY: (
            "Transform the image into a fantasy art style, with magical elements, epic "
            "landscapes, and vibrant colors."
        ),
        EditStyle.POP_ART: (
            "Convert the image into a pop art style, with bold outlines, bright, blocky colors, "
            "and a comic book feel."
        ),
    }

    FACE_SHOT_TYPES: Dict[FaceShotType, str] = {
        FaceShotType.CLOSE_UP: (
            "A centered, head-on (en face) extreme close-up studio portrait, tightly cropped from "
            "the top of the head to the bottom of the chin. Focus on showing only the head and "
            "neck, without shoulders, clothing, or other body parts in the frame"
        ),
        FaceShotType.CHEST_UP: "A head and shoulders studio portrait photo, showing the person from the chest up",
        FaceShotType.WAIST_UP: "A medium shot studio portrait photo of the person from the waist up",
        FaceShotType.KNEE_UP: "A medium-long shot studio portrait photo of the person from the knees up",
        FaceShotType.FULL_BODY: (
            "A full-body shot studio portrait photo of the person, showing them standing from "
            "head to toe, barefoot"
        ),
    }

    VARIATIONS: Dict[OutputMode, List[Tuple[str, str]]] = {
        OutputMode.ANGLES: [
            ("angle_1", "A frontal view portrait (slightly different from the original)."),
            ("angle_2", "A 3/4 view portrait (slightly turned to the left)."),
            ("angle_3", "A side profile portrait (turned to the right)."),
            ("angle_4", "A portrait from a high angle, looking down (bird's-eye view)."),
            ("angle_5", "A 3/4 view portrait (slightly turned to the right)."),
            ("angle_6", "A side profile portrait (turned to the left)."),
            ("angle_7", "A portrait from a low angle, looking up (worm's-eye view)."),
            ("angle_8", "A portrait with the head slightly tilted to the side."),
            ("angle_9", "A portrait looking over the left shoulder."),
            ("angle_10", "A close-up portrait focusing on the face."),
        ],
        OutputMode.EXPRESSIONS: [
            ("expr_1", "A portrait with a light, gentle smile."),
            ("expr_2", "A portrait with a wide, joyful smile."),
            ("expr_3", "A portrait showing a sad or melancholic expression."),
            ("expr_4", "A portrait with a surprised expression (mouth slightly open, eyebrows raised)."),
            ("expr_5", "A portrait with a thoughtful and pensive expression."),
            ("expr_6", "A portrait with a serious, neutral expression."),
            ("expr_7", "A portrait with a playful wink."),
            ("expr_8", "A portrait showing a confident and determined look."),
            ("expr_9", "A portrait that is laughing heartily."),
            ("expr_10", "A portrait showing an annoyed or grumpy expression."),
        ],
    }


CAMERA_SHUTTER_SPEEDS = [
    "1/8000s", "1/4000s", "1/2000s", "1/1000s", "1/500s", "1/250s", "1/125s",
    "1/60s", "1/30s", "1/15s", "1/8s", "1/4s", "1/2s", "1s", "2s",
]
CAMERA_ISO_VALUES = ["100", "200", "400", "800", "1600", "3200", "6400"]


# ---------------------------------------------------------------------------
# Photo generation (free text + expert mode)
# ---------------------------------------------------------------------------

class PhotoSelections(BaseModel):
    """Selections on the photo generation screen."""

    prompt: str = ""

    style_enabled: bool = False
    style: PhotoStyle = PhotoStyle.SUPER_REALISM
    custom_style: str = ""

    camera_enabled: bool = False
    aperture: float = Field(default=5.6, ge=1.4, le=22)
    shutter_speed: str = "1/125s"
    iso: str = "100"
    focal_length: int = Field(default=50, ge=14, le=200)

    lighting_enabled: bool = False
    lighting: LightingStyle = LightingStyle.CINEMATIC
    custom_lighting: str = ""

    effects_enabled: bool = False
    film_grain: FilmGrain = FilmGrain.NONE
    blur: Blur = Blur.NONE
    vignette: Vignette = Vignette.NONE

    aspect_directive_enabled: bool = False
    aspect_ratio: AspectRatio = AspectRatio.SQUARE

    negative_prompt_enabled: bool = False
    negative_prompt: str = ""

    @field_validator("shutter_speed")
    @classmethod
    def _known_shutter_speed(cls, value: str) -> str:
        if value not in CAMERA_SHUTTER_SPEEDS:
            raise ValueError(f"Unknown shutter speed: {value}")
        return value

    @field_validator("iso")
    @classmethod
    def _known_iso(cls, value: str) -> str:
        if value not in CAMERA_ISO_VALUES:
            raise ValueError(f"Unknown ISO value: {value}")
        return value


def _split_negative(text: str) -> str:
    terms = [term.strip() for term in text.split(",")]
    return ", ".join(term for term in terms if term)


PHOTO_RULES: List[ClauseRule[PhotoSelections]] = [
    ClauseRule(
        ClauseGroup.SCENE,
        lambda s: s.style_enabled and s.style == PhotoStyle.CUSTOM and bool(s.custom_style.strip()),
        lambda s: f"in the style of {s.custom_style.strip()}",
    ),
    ClauseRule(
        ClauseGroup.SCENE,
        lambda s: s.style_enabled and s.style in PromptLibrary.PHOTO_STYLES,
        lambda s: PromptLibrary.PHOTO_STYLES[s.style],
    ),
    ClauseRule(
        ClauseGroup.CAPTURE,
        lambda s: s.camera_enabled,
        lambda s: (
            f"shot on a camera with settings: aperture f/{s.aperture:.1f}, shutter speed "
            f"{s.shutter_speed}, ISO {s.iso}, focal length {s.focal_length}mm"
        ),
    ),
    ClauseRule(
        ClauseGroup.CAPTURE,
        lambda s: s.lighting_enabled and s.lighting == LightingStyle.CUSTOM and bool(s.custom_lighting.strip()),
        lambda s: f"with {s.custom_lighting.strip()} lighting",
    ),
    ClauseRule(
        ClauseGroup.CAPTURE,
        lambda s: s.lighting_enabled and s.lighting in PromptLibrary.LIGHTING,
        lambda s: PromptLibrary.LIGHTING[s.lighting],
    ),
    ClauseRule(
        ClauseGroup.EFFECTS,
        lambda s: s.effects_enabled and s.film_grain in PromptLibrary.FILM_GRAIN,
        lambda s: PromptLibrary.FILM_GRAIN[s.film_grain],
    ),
    ClauseRule(
        ClauseGroup.EFFECTS,
        lambda s: s.effects_enabled and s.blur in PromptLibrary.BLUR,
        lambda s: PromptLibrary.BLUR[s.blur],
    ),
    ClauseRule(
        ClauseGroup.EFFECTS,
        lambda s: s.effects_enabled and s.vignette in PromptLibrary.VIGNETTE,
        lambda s: PromptLibrary.VIGNETTE[s.vignette],
    ),
    ClauseRule(
        ClauseGroup.ASPECT_RATIO,
        lambda s: s.aspect_directive_enabled,
        lambda s: PromptLibrary.ASPECT_RATIOS[s.aspect_ratio],
    ),
    ClauseRule(
        ClauseGroup.NEGATIVE,
        lambda s: s.negative_prompt_enabled and bool(_split_negative(s.negative_prompt)),
        lambda s: f"Negative prompt: {_split_negative(s.negative_prompt)}",
    ),
]


def build_photo_prompt(selections: PhotoSelections) -> str:
    """Compose the prompt for the photo generation screen."""
    return build_prompt(selections.prompt, evaluate_rules(PHOTO_RULES, selections))


def photo_prompt_has_content(selections: PhotoSelections) -> bool:
    """Whether the free text or any enabled clause would reach the prompt."""
    if _clean(selections.prompt):
        return True
    return any(clause.is_active for clause in evaluate_rules(PHOTO_RULES, selections))


# ---------------------------------------------------------------------------
# Portrait adaptation (identity-preserving variations of an uploaded photo)
# ---------------------------------------------------------------------------

class PortraitSelections(BaseModel):
    """Selections on the portrait adaptation screen."""

    shot_type: ShotType = ShotType.CLOSE_UP
    clothing: ClothingOption = ClothingOption.CLASSIC
    custom_clothing: str = ""
    background: BackgroundOption = BackgroundOption.STUDIO_GRAY
    custom_background: str = ""
    aspect_ratio: AspectRatio = AspectRatio.SQUARE


PORTRAIT_RULES: List[ClauseRule[PortraitSelections]] = [
    ClauseRule(
        ClauseGroup.SHOT_TYPE,
        lambda s: True,
        lambda s: PromptLibrary.SHOT_TYPES[s.shot_type],
    ),
    ClauseRule(
        ClauseGroup.SUBJECT,
        lambda s: s.clothing == ClothingOption.CUSTOM and bool(s.custom_clothing.strip()),
        lambda s: f"The person is wearing: {s.custom_clothing.strip()}",
    ),
    ClauseRule(
        ClauseGroup.SUBJECT,
        lambda s: s.clothing in PromptLibrary.CLOTHING,
        lambda s: PromptLibrary.CLOTHING[s.clothing],
    ),
    ClauseRule(
        ClauseGroup.SCENE,
        lambda s: s.background == BackgroundOption.CUSTOM,
        lambda s: s.custom_background,
    ),
    ClauseRule(
        ClauseGroup.SCENE,
        lambda s: s.background in PromptLibrary.BACKGROUNDS,
        lambda s: PromptLibrary.BACKGROUNDS[s.background],
    ),
    ClauseRule(
        ClauseGroup.ASPECT_RATIO,
        lambda s: True,
        lambda s: PromptLibrary.ASPECT_RATIOS[s.aspect_ratio],
    ),
]


def build_portrait_prompt(selections: PortraitSelections, variation_text: str = "") -> str:
    """Compose an identity-preserving portrait prompt.

    Args:
        selections: Shot, clothing, background and aspect ratio choices
        variation_text: The specific angle or expression for this output

    Returns:
        The composed prompt
    """
    clauses = evaluate_rules(PORTRAIT_RULES, selections)
    clauses.append(PromptClause(
        ClauseGroup.VARIATION,
        f'The new image should represent this specific variation: "{variation_text.strip()}"',
        enabled=bool(variation_text.strip()),
    ))
    return build_prompt(PromptLibrary.PORTRAIT_BASE_PROMPT, clauses)


def portrait_variations(mode: OutputMode) -> List[Tuple[str, str]]:
    """Return the ``(id, text)`` variation set for a portrait batch."""
    return list(PromptLibrary.VARIATIONS[mode])


# ---------------------------------------------------------------------------
# Image-to-image variation layering
# ---------------------------------------------------------------------------

def build_variation_prompt(text: str, strength: int) -> str:
    """Layer a user prompt with the identity instruction and a strength modifier.

    Args:
        text: Free-text prompt; may be empty
        strength: Variation strength from 1 (minimal) to 10 (maximum)

    Returns:
        The image-to-image prompt

    Raises:
        ValueError: If strength is outside 1..10
    """
    if strength not in PromptLibrary.VARIATION_STRENGTHS:
        raise ValueError(f"Variation strength must be between 1 and 10, got {strength}")

    text = text.strip()
    text_part = f'Text prompt: "{text}".' if text else PromptLibrary.CREATIVE_JUDGMENT
    return (
        f"{text_part} {PromptLibrary.IMAGE_VARIATION_BASE_PROMPT} "
        f"{PromptLibrary.VARIATION_STRENGTHS[strength]}"
    )


# ---------------------------------------------------------------------------
# Image editing
# ---------------------------------------------------------------------------

class EditSelections(BaseModel):
    """Selections on the editing screen. Percent values, neutral by default."""

    adjustments_enabled: bool = False
    grain: int = Field(default=0, ge=0, le=100)
    blur: int = Field(default=0, ge=0, le=100)
    contrast: int = Field(default=100, ge=0, le=200)
    brightness: int = Field(default=0, ge=-100, le=100)
    saturation: int = Field(default=100, ge=0, le=200)
    sharpness: int = Field(default=0, ge=0, le=100)
    vignette: int = Field(default=0, ge=0, le=100)

    style_enabled: bool = False
    style: EditStyle = EditStyle.PHOTO_REALISM
    custom_style: str = ""


EDIT_RULES: List[ClauseRule[EditSelections]] = [
    ClauseRule(ClauseGroup.EFFECTS, lambda s: s.adjustments_enabled and s.grain > 0,
               lambda s: f"add {s.grain}% film grain"),
    ClauseRule(ClauseGroup.EFFECTS, lambda s: s.adjustments_enabled and s.blur > 0,
               lambda s: f"apply {s.blur}% blur"),
    ClauseRule(ClauseGroup.EFFECTS, lambda s: s.adjustments_enabled and s.contrast != 100,
               lambda s: f"set contrast to {s.contrast}%"),
    ClauseRule(ClauseGroup.EFFECTS, lambda s: s.adjustments_enabled and s.brightness != 0,
               lambda s: f"adjust brightness by {s.brightness}%"),
    ClauseRule(ClauseGroup.EFFECTS, lambda s: s.adjustments_enabled and s.saturation != 100,
               lambda s: f"set saturation to {s.saturation}%"),
    ClauseRule(ClauseGroup.EFFECTS, lambda s: s.adjustments_enabled and s.sharpness > 0,
               lambda s: f"increase sharpness by {s.sharpness}%"),
    ClauseRule(ClauseGroup.EFFECTS, lambda s: s.adjustments_enabled and s.vignette > 0,
               lambda s: f"add a {s.vignette}% vignette"),
    ClauseRule(
        ClauseGroup.EFFECTS,
        lambda s: s.style_enabled and s.style == EditStyle.CUSTOM and bool(s.custom_style.strip()),
        lambda s: f"apply this style: {s.custom_style.strip()}",
    ),
    ClauseRule(
        ClauseGroup.EFFECTS,
        lambda s: s.style_enabled and s.style in PromptLibrary.EDIT_STYLES,
        lambda s: PromptLibrary.EDIT_STYLES[s.style],
    ),
]


def build_edit_prompt(selections: EditSelections) -> str:
    """Compose an edit instruction, or the fallback when nothing is selected."""
    clauses = evaluate_rules(EDIT_RULES, selections)
    if not any(clause.is_active for clause in clauses):
        return FALLBACK_INSTRUCTION
    return build_prompt(PromptLibrary.EDIT_BASE_PROMPT, clauses)


# ---------------------------------------------------------------------------
# Avatar (face) generation
# ---------------------------------------------------------------------------

class AvatarSelections(BaseModel):
    """Attributes for generating a new face. ``random`` means no preference."""

    gender: Gender = Gender.MAN
    shot_type: FaceShotType = FaceShotType.CLOSE_UP
    ethnic_coherence: bool = False
    age_range: str = RANDOM
    ethnicity: str = RANDOM
    skin_tone: str = RANDOM
    face_shape: str = RANDOM
    eye_shape: str = RANDOM
    eye_color: str = RANDOM
    nose_shape: str = RANDOM
    lips_shape: str = RANDOM
    hair_color: str = RANDOM
    hair_length: str = RANDOM
    hair_texture: str = RANDOM
    facial_hair: str = RANDOM
    expression: str = RANDOM


_AVATAR_ATTRIBUTES = (
    "skin_tone", "face_shape", "eye_shape", "eye_color", "nose_shape",
    "lips_shape", "hair_color", "hair_length", "hair_texture",
)


def _avatar_clothing(selections: AvatarSelections) -> str:
    if selections.shot_type == FaceShotType.CLOSE_UP:
        return ""
    lower_body = selections.shot_type != FaceShotType.CHEST_UP
    if selections.gender == Gender.WOMAN:
        top = "a gray cropped tank top with thin straps"
        return f"wearing {top} and gray sports bikini bottoms" if lower_body else f"wearing {top}"
    top = "a simple plain gray tank top"
    return f"wearing {top} and tight-fitting gray sports shorts" if lower_body else f"wearing {top}"


def _avatar_base(selections: AvatarSelections) -> str:
    person = "a woman" if selections.gender == Gender.WOMAN else "a man"
    shot = PromptLibrary.FACE_SHOT_TYPES[selections.shot_type]
    subject = f"{shot} of {person}"
    if selections.shot_type != FaceShotType.CLOSE_UP:
        subject += ", facing camera"
    parts = [
        "masterpiece, highest quality, png format",
        subject,
        _avatar_clothing(selections),
        "on a solid neutral gray studio background",
        "8k, ultra-high detail",
        "professional DSLR photograph, cinematic soft lighting, sharp focus",
    ]
    return ", ".join(part for part in parts if part)


def _is_set(value: str) -> bool:
    return bool(value.strip()) and value.strip().lower() not in SENTINEL_VALUES


def build_avatar_prompt(selections: AvatarSelections) -> str:
    """Compose the prompt for generating a new face."""
    coherent = selections.ethnic_coherence and _is_set(selections.ethnicity)

    clauses = [
        PromptClause(
            ClauseGroup.SUBJECT,
            f"a person of typical {selections.ethnicity.strip()} ethnicity",
            enabled=coherent,
        ),
        PromptClause(ClauseGroup.SUBJECT, selections.age_range.lower()),
        PromptClause(ClauseGroup.SUBJECT, selections.ethnicity.lower(), enabled=not coherent),
    ]
    clauses.extend(
        PromptClause(ClauseGroup.SUBJECT, getattr(selections, name).lower())
        for name in _AVATAR_ATTRIBUTES
    )
    clauses.append(PromptClause(
        ClauseGroup.SUBJECT,
        selections.facial_hair.lower(),
        enabled=selections.gender == Gender.MAN,
    ))
    clauses.append(PromptClause(ClauseGroup.SUBJECT, selections.expression.lower()))

    return build_prompt(_avatar_base(selections), clauses)
