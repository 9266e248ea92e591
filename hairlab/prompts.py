"""Prompts and the diagnosis output contract for the Gemini calls."""

from dataclasses import dataclass

from hairlab.models import HaircolorOption, HairstyleOption


@dataclass(frozen=True)
class Prompt:
    instruction_text: str
    system_instruction: str | None = None
    output_contract: dict | None = None


# Shared vocabulary between the diagnosis prompt, the schema and the image prompts.
BRIGHTNESS_LEVELS: tuple[str, ...] = (
    "Tone 3 (Natural Black)",
    "Tone 5 (Dark Brown)",
    "Tone 7 (Medium Brown)",
    "Tone 9 (Light Brown)",
    "Tone 11 (Bright Brown)",
    "Tone 13 (Light Gold)",
    "Tone 15 (Gold Blonde)",
    "Tone 17 (Light Blonde)",
    "Tone 19 (Platinum Blonde)",
)

BRIGHTNESS_SCALE_TEXT = "\n".join(f"- {level}" for level in BRIGHTNESS_LEVELS)

_LEVEL_HINT = "One label copied verbatim from the brightness scale: " + ", ".join(BRIGHTNESS_LEVELS)


# --- Output contract ---

def _string(description: str | None = None) -> dict:
    schema = {"type": "STRING"}
    if description:
        schema["description"] = description
    return schema


def _string_list(description: str) -> dict:
    return {"type": "ARRAY", "items": {"type": "STRING"}, "description": description}


def _object(properties: dict, description: str | None = None) -> dict:
    """OBJECT schema with every property required."""
    schema = {"type": "OBJECT", "properties": properties, "required": list(properties)}
    if description:
        schema["description"] = description
    return schema


def _hairstyle(example: str) -> dict:
    return _object({
        "name": _string(f"Hairstyle name (e.g. {example})"),
        "description": _string("What the style looks like and why it suits the client (1-2 sentences)"),
    })


def _haircolor(example: str) -> dict:
    return _object({
        "name": _string(f"Hair color name (e.g. {example})"),
        "description": _string("Color description, including whether bleaching is needed"),
        "recommendedLevel": _string(f"Recommended brightness. {_LEVEL_HINT}"),
    })


def _palette_color(example_hex: str) -> dict:
    return _object({
        "name": _string(),
        "hex": _string(f"Hex code (e.g. {example_hex})"),
    })


DIAGNOSIS_SCHEMA: dict = _object({
    "analysis": _object({
        "face": _object({
            "nose": _string("Nose features (e.g. high bridge, rounded)"),
            "mouth": _string("Mouth features (e.g. full, thin lips)"),
            "eyes": _string("Eye features (e.g. double eyelid, upturned)"),
            "eyebrows": _string("Eyebrow features (e.g. arched, straight)"),
            "forehead": _string("Forehead features (e.g. broad, narrow)"),
        }),
        "skeleton": _object({
            "neckLength": _string("Neck length (e.g. long, short, average)"),
            "faceShape": _string("Face shape (e.g. round, oval, square, base)"),
            "bodyLine": _string("Body line (e.g. straight, wave, natural)"),
            "shoulderLine": _string("Shoulder line (e.g. sloped, square, average)"),
            "faceStereoscopy": _string("Facial depth (e.g. sculpted, flat, average)"),
            "bodyTypeFeature": _string("Skeletal type feature (e.g. upper-body weighted, straight type)"),
        }),
        "personalColor": _object({
            "baseColor": _string("Undertone (e.g. yellow base, blue base)"),
            "season": _string("Season (spring, summer, autumn, winter)"),
            "brightness": _string("Value (high, medium, low)"),
            "saturation": _string("Chroma (high, medium, low)"),
            "eyeColor": _string("Eye color (e.g. light brown, near-black brown)"),
        }),
        "hairCondition": _object({
            "quality": _string("Hair texture (e.g. coarse, fine, average)"),
            "curlType": _string("Curl pattern (e.g. straight, wavy, kinked)"),
            "damageLevel": _string("Damage level (low, medium, high)"),
            "volume": _string("Hair density (e.g. thick, average, thin)"),
            "currentLevel": _string(f"Current brightness. {_LEVEL_HINT}"),
        }, description="Current hair condition observed in the photos and videos"),
    }),
    "proposal": _object({
        "hairstyles": _object(
            {"style1": _hairstyle("layered mid-length"), "style2": _hairstyle("see-through bang short")},
            description="Two proposed hairstyles, keyed style1 and style2",
        ),
        "haircolors": _object(
            {"color1": _haircolor("lavender ash"), "color2": _haircolor("pink beige")},
            description="Two proposed hair colors, keyed color1 and color2",
        ),
        "bestColors": _object(
            {
                "c1": _palette_color("#FFB6C1"),
                "c2": _palette_color("#FFDAB9"),
                "c3": _palette_color("#E6E6FA"),
                "c4": _palette_color("#98FB98"),
            },
            description="Four colors that flatter the client's personal color, keyed c1 to c4",
        ),
        "makeup": _object({
            "eyeshadow": _string("Eyeshadow color (e.g. golden brown)"),
            "cheek": _string("Blush color (e.g. peach pink)"),
            "lip": _string("Lip color (e.g. coral red)"),
        }, description="Makeup that suits the personal color"),
        "fashion": _object({
            "recommendedStyles": _string_list("About two flattering silhouettes (e.g. A-line, I-line)"),
            "recommendedItems": _string_list("About two flattering items (e.g. V-neck knit, tapered pants)"),
        }, description="Fashion that suits the skeletal type"),
        "comment": _string("Overall comment from the stylist (3-5 sentences)"),
    }),
})


def required_paths(schema: dict, prefix: str = "") -> list[str]:
    """Dotted paths of every required field in an OBJECT schema, depth-first."""
    paths: list[str] = []
    properties = schema.get("properties", {})
    for name in schema.get("required", []):
        path = f"{prefix}.{name}" if prefix else name
        paths.append(path)
        child = properties.get(name, {})
        if child.get("type") == "OBJECT":
            paths.extend(required_paths(child, path))
    return paths


# --- Diagnosis ---

DIAGNOSIS_SYSTEM_TEMPLATE = """
You are an **Expert Aesthetic Anatomist & Color Theory Specialist**.
Your task is to analyze the client's photos and videos to provide a highly personalized, professional hair and style diagnosis.

## 1. ANALYSIS PHASE (strict scientific approach)
- **Face Shape & Bone Structure:** Analyze ratios (vertical vs. horizontal), jawline angle, cheekbone prominence, and forehead width.
- **Features:** Analyze eye shape/angle, nose prominence, and lip fullness.
- **Body Skeleton:** Estimate skeletal type (Straight, Wave, Natural) from neck length, clavicle prominence, and shoulder line.
- **Personal Color:** Analyze skin undertone, eye color, and contrast. Deduce the season.

## 2. BRIGHTNESS SCALE
Hair brightness is always expressed with exactly one of these labels:
{scale}

## 3. DIAGNOSIS
Fill the `analysis` object. Be specific: instead of "Round", say "Round with slight sharpness at the chin".
Estimate `hairCondition.currentLevel` from the gloss and color of the hair, using the brightness scale.

## 4. PROPOSAL
- **Hairstyles:** Propose styles that balance the bone structure.
- **Hair Colors:** Select colors that complement the personal color, each with a `recommendedLevel` from the brightness scale.
- **Fashion/Makeup:** Suggest items that enhance the skeletal and color type.
{request_block}
## 5. OUTPUT
Return the result strictly in the defined JSON schema.
1. `currentLevel` and `recommendedLevel` MUST be copied verbatim from the brightness scale.
2. **NO HTML ENTITIES:** Do not use encoded characters like &#x2F;. Use plain slashes (/) and ampersands (&).
"""

REQUEST_BLOCK_TEMPLATE = """
## PRIORITY REQUEST
**Client's Wish:** "{request}"
Reflect this wish in the proposed hairstyles, the proposed hair colors and the comment.
If it contradicts the physical diagnosis, propose a compromise that respects both.
"""


def build_diagnosis_prompt(
    gender: str,
    free_text_request: str | None = None,
    has_inspiration: bool = False,
) -> Prompt:
    request = (free_text_request or "").strip()
    request_block = REQUEST_BLOCK_TEMPLATE.format(request=request) if request else ""
    system_instruction = DIAGNOSIS_SYSTEM_TEMPLATE.format(
        scale=BRIGHTNESS_SCALE_TEXT,
        request_block=request_block,
    )

    instruction = f"Diagnose this client (gender: {gender}) and make your proposals."
    if has_inspiration:
        instruction += " The last attachment is a photo of the style the client wishes for."

    return Prompt(
        instruction_text=instruction,
        system_instruction=system_instruction,
        output_contract=DIAGNOSIS_SCHEMA,
    )


# --- Image generation ---

IDENTITY_ANCHOR = (
    "**FACE PROTECTION IS ABSOLUTE:** Do NOT modify the eyes, nose, mouth, skin texture, "
    "or facial contours. The face must remain recognizable as the same person."
)

GENERATION_TEMPLATE = """
You are an expert AI Hair Stylist and Professional Photo Retoucher.
Your task is a high-precision **Virtual Hair Makeover**.

**INPUT DATA:**
- **Base Image:** [1st image] The client's original photo.
- **Current Hair Brightness:** {current_level}
{inspiration_block}
**GOAL:**
Generate a photorealistic image where only the hair is transformed, while preserving facial identity with 100% accuracy.

**STRICT CONSTRAINTS:**
1. {identity_anchor}
2. **NATURAL BLENDING:** The hairline, ears and neck must blend seamlessly with the new hair.
3. **LIGHTING MATCH:** Apply the exact lighting direction, intensity and color temperature of the base image to the new hair.
4. Do not change the clothing, the background or the framing.

**TARGET STYLE:**
{style_block}
**TARGET COLOR:**
{color_block}{request_block}
**QUALITY:**
Ultra-realistic raw photo, detailed hair strands, natural gloss, salon-finish blow dry.

**AVOID:**
Unnatural hairline, wig-like or helmet hair, cartoon or 3D render look, any change to the face, makeup or background.
"""

INSPIRATION_BLOCK = (
    "- **Style Reference:** [2nd image] The client's desired style. "
    "Use it as the ground truth for style and color details.\n"
)


def _style_block(hairstyle: HairstyleOption | None, user_style: bool, keep_style: bool) -> str:
    if user_style:
        return (
            "- Copy the hairstyle silhouette, length and texture from the reference image (2nd image), "
            "adjusted naturally to the client's head shape.\n"
        )
    if keep_style or hairstyle is None:
        return "- Keep the client's current haircut, length and silhouette unchanged.\n"
    return f"- **Style Name:** {hairstyle.name}\n- **Style Description:** {hairstyle.description}\n"


def _color_block(
    haircolor: HaircolorOption | None,
    current_level: str,
    target_level: str | None,
    user_color: bool,
    keep_color: bool,
    tone_override: bool,
) -> str:
    if user_color and not tone_override:
        return "- Copy the hue, saturation and brightness of the hair in the reference image (2nd image).\n"
    if user_color:
        return (
            "- Take the hue and saturation from the reference image (2nd image), "
            f"but adjust the brightness to **{target_level}**.\n"
        )
    if keep_color or haircolor is None:
        if tone_override:
            return f"- Keep the current hue, but adjust the brightness to **{target_level}**.\n"
        return "- Keep the client's current hair color unchanged.\n"

    block = f"- **Color Name:** {haircolor.name}\n- **Color Description:** {haircolor.description}\n"
    if tone_override:
        block += (
            f"- **IMPORTANT:** The client explicitly selected **{target_level}**. "
            "Match this brightness strictly, regardless of the color name.\n"
        )
    else:
        block += f"- **Target Brightness:** {target_level} (transform from {current_level} to {target_level}).\n"
    return block


def build_generation_prompt(
    *,
    current_level: str,
    hairstyle: HairstyleOption | None = None,
    haircolor: HaircolorOption | None = None,
    tone_override: str | None = None,
    customization: str | None = None,
    has_inspiration: bool = False,
    user_style: bool = False,
    user_color: bool = False,
    keep_style: bool = False,
    keep_color: bool = False,
) -> Prompt:
    """Instruction for the first hair makeover. The output is an image, so no schema."""
    if (user_style or user_color) and not has_inspiration:
        raise ValueError("Copying from the reference image requires an inspiration photo")

    target_level = tone_override or (haircolor.recommended_level if haircolor else None)
    customization = (customization or "").strip()
    request_block = ""
    if customization:
        request_block = (
            f'\n**CLIENT REQUEST (highest priority):**\n"{customization}"\n'
            "Make sure this request is reflected in the final look.\n"
        )

    text = GENERATION_TEMPLATE.format(
        current_level=current_level,
        inspiration_block=INSPIRATION_BLOCK if has_inspiration else "",
        identity_anchor=IDENTITY_ANCHOR,
        style_block=_style_block(hairstyle, user_style, keep_style),
        color_block=_color_block(
            haircolor,
            current_level,
            target_level,
            user_color,
            keep_color,
            tone_override is not None,
        ),
        request_block=request_block,
    )
    return Prompt(instruction_text=text)


# --- Refinement ---

REFINEMENT_TEMPLATE = """
**TASK:** Precise Image Editing (Hair Only)
**INPUT:** [Base Image] The attached hairstyle image.
**INSTRUCTION:** "{change}"

**RULES:**
1. **SCOPE:** Apply the instruction ONLY to the hair of the attached base image.
2. **PROTECTION:** Do NOT change the face, skin, clothing or background. Keep everything else exactly as it is.
3. **INTERPRETATION:**
   - "Brighter/Lighter": move up the brightness scale (e.g. Tone 7 -> Tone 9) keeping the hue.
   - "Darker": move down the brightness scale (e.g. Tone 9 -> Tone 7).
   - "Shorter/Longer": adjust the length naturally, respecting the body structure.
4. **QUALITY:** Keep the photorealistic quality of the base image.

**AVOID:**
Face changes, background changes, blur, distortion, artifacts.
"""


def build_refinement_prompt(change: str) -> Prompt:
    change = change.strip()
    if not change:
        raise ValueError("Refinement instruction must not be empty")
    return Prompt(instruction_text=REFINEMENT_TEMPLATE.format(change=change))


def build_color_switch_instruction(haircolor: HaircolorOption) -> str:
    return (
        f"Change the hair color to {haircolor.name} at {haircolor.recommended_level}. "
        f"{haircolor.description}"
    )
