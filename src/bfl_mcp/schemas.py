"""Tool argument declarations and validation for generate_image.

Each model variant accepts its own subset of parameters (see
``BFLClient.MODELS``). Arguments are checked here, before the
orchestrator sees them, and absent fields are dropped so they are never
sent to the provider as nulls.
"""

import re
from typing import Any, Dict, List, Tuple

from .errors import InvalidModel, InvalidParameters
from .providers.bfl import BFLClient

ASPECT_RATIO_PATTERN = re.compile(r"^\d+:\d+$")


def _models_accepting(name: str) -> List[str]:
    return [key for key, model in BFLClient.MODELS.items() if name in model.parameters]


# Field name -> JSON schema fragment. Ranges are enforced by validate_arguments.
PARAMETER_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "prompt": {
        "type": "string",
        "description": "Text description of the desired image",
    },
    "image_prompt": {
        "type": "string",
        "description": "Base64 encoded image for Flux Redux or image remixing",
    },
    "input_image": {
        "type": "string",
        "description": "Base64 encoded image or URL to edit with Kontext",
    },
    "input_image_2": {
        "type": "string",
        "description": "Additional reference image for experimental Multiref",
    },
    "input_image_3": {
        "type": "string",
        "description": "Additional reference image for experimental Multiref",
    },
    "input_image_4": {
        "type": "string",
        "description": "Additional reference image for experimental Multiref",
    },
    "aspect_ratio": {
        "type": "string",
        "description": "Image aspect ratio (e.g., '1:1', '16:9', '9:16', '21:9')",
        "pattern": ASPECT_RATIO_PATTERN.pattern,
    },
    "width": {
        "type": "integer",
        "description": "Image width in pixels (256-1440, multiple of 32)",
        "minimum": 256,
        "maximum": 1440,
        "multipleOf": 32,
    },
    "height": {
        "type": "integer",
        "description": "Image height in pixels (256-1440, multiple of 32)",
        "minimum": 256,
        "maximum": 1440,
        "multipleOf": 32,
    },
    "seed": {
        "type": "integer",
        "description": "Seed for reproducibility",
    },
    "prompt_upsampling": {
        "type": "boolean",
        "description": "Whether to perform upsampling on the prompt",
    },
    "safety_tolerance": {
        "type": "integer",
        "description": "Safety tolerance level (0 strict - 6 permissive, default: 2)",
        "minimum": 0,
        "maximum": 6,
    },
    "output_format": {
        "type": "string",
        "description": "Output format (default: 'jpeg' for flux-pro/pro-ultra, 'png' for kontext models)",
        "enum": ["jpeg", "png"],
    },
    "raw": {
        "type": "boolean",
        "description": "Generate less processed, more natural-looking images",
    },
    "image_prompt_strength": {
        "type": "number",
        "description": "Blend strength between prompt and image_prompt (0-1, default: 0.1)",
        "minimum": 0,
        "maximum": 1,
    },
}


def tool_input_schema() -> Dict[str, Any]:
    """JSON schema for the generate_image tool."""
    properties: Dict[str, Any] = {
        "model": {
            "type": "string",
            "description": "Model to use for generation: " + ", ".join(
                f"'{key}' ({model.name})" for key, model in BFLClient.MODELS.items()
            ),
            "enum": list(BFLClient.MODELS),
        },
        "wait": {
            "type": "boolean",
            "description": "Whether to wait for generation to complete. If false, returns the request ID immediately",
            "default": True,
        },
    }

    for name, schema in PARAMETER_SCHEMAS.items():
        prop = dict(schema)
        if name != "prompt":
            prop["description"] = f"{schema['description']}. Used by {', '.join(_models_accepting(name))}"
        properties[name] = prop

    return {
        "type": "object",
        "properties": properties,
        "required": ["model", "prompt"],
    }


def _check_value(name: str, value: Any) -> Any:
    schema = PARAMETER_SCHEMAS[name]
    expected = schema["type"]

    if expected == "string":
        if not isinstance(value, str):
            raise InvalidParameters(f"{name} must be a string")
        if "enum" in schema and value not in schema["enum"]:
            raise InvalidParameters(f"{name} must be one of: {', '.join(schema['enum'])}")
        if "pattern" in schema and not re.fullmatch(schema["pattern"], value):
            raise InvalidParameters(f"{name} must look like '16:9', got {value!r}")
        return value

    if expected == "boolean":
        if not isinstance(value, bool):
            raise InvalidParameters(f"{name} must be true or false")
        return value

    # bool is an int subclass; reject it for numeric fields
    if isinstance(value, bool):
        raise InvalidParameters(f"{name} must be a number")
    if expected == "integer":
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if not isinstance(value, int):
            raise InvalidParameters(f"{name} must be an integer")
    elif not isinstance(value, (int, float)):
        raise InvalidParameters(f"{name} must be a number")

    if "minimum" in schema and value < schema["minimum"]:
        raise InvalidParameters(f"{name} must be >= {schema['minimum']}")
    if "maximum" in schema and value > schema["maximum"]:
        raise InvalidParameters(f"{name} must be <= {schema['maximum']}")
    if "multipleOf" in schema and value % schema["multipleOf"]:
        raise InvalidParameters(f"{name} must be a multiple of {schema['multipleOf']}")
    return value


def validate_arguments(arguments: Dict[str, Any]) -> Tuple[str, bool, Dict[str, Any]]:
    """Validate generate_image arguments.

    Returns:
        (model, wait, parameters) where parameters holds only the fields
        that were given a value.

    Raises:
        InvalidModel: unknown or missing model.
        InvalidParameters: missing prompt, bad value, or a field the
            selected model does not accept.
    """
    model = arguments.get("model")
    model_info = BFLClient.MODELS.get(model) if isinstance(model, str) else None
    if model_info is None:
        raise InvalidModel(str(model), BFLClient.MODELS)

    wait = arguments.get("wait", True)
    if wait is None:
        wait = True
    if not isinstance(wait, bool):
        raise InvalidParameters("wait must be true or false")

    prompt = arguments.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise InvalidParameters("prompt is required")

    parameters: Dict[str, Any] = {}
    for name, value in arguments.items():
        if name in ("model", "wait") or value is None:
            continue
        if name not in PARAMETER_SCHEMAS:
            raise InvalidParameters(f"Unknown parameter: {name}")
        if name not in model_info.parameters:
            raise InvalidParameters(
                f"{name} is not supported by {model}. Supported by: {', '.join(_models_accepting(name))}"
            )
        parameters[name] = _check_value(name, value)

    return model, wait, parameters
