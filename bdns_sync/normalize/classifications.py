"""
Parsing of legacy classification payloads.

The same logical field ("sector", "instrumento", "region") arrives in three
shapes:
- ARRAY: [{"codigo": "A", "descripcion": "Agricultura"}, ...]
- OBJECT: {"ES511 - Barcelona": "", ...} (keys are the labels)
- STRING: "Andalucía"

classify_payload() decides the shape once and extract_refs() dispatches to
one pure extractor per shape.
"""

import json
import re
from enum import Enum
from typing import Any, Callable, Dict, List

from bdns_sync.core.domain_models import ClassificationKind, ClassificationRef
from bdns_sync.core.errors import ClassificationError
from bdns_sync.core.utils import generate_code


class PayloadShape(str, Enum):
    ARRAY = "array"
    OBJECT = "object"
    STRING = "string"
    EMPTY = "empty"


# "ES511 - Barcelona", "ES51 Cataluña", "ES511"
REGION_CODE_PATTERN = re.compile(r"^([A-Z]{2}\d+)\b\s*(?:-\s*)?(.*)$")

_CODE_KEYS = ("codigo", "code")
_NAME_KEYS = ("descripcion", "description", "nombre", "name")


def classify_payload(payload: Any) -> PayloadShape:
    """
    Determine the shape of a legacy payload.

    Raises:
        ClassificationError: For shapes that are none of array/object/string
    """
    if payload is None:
        return PayloadShape.EMPTY
    if isinstance(payload, list):
        return PayloadShape.ARRAY if payload else PayloadShape.EMPTY
    if isinstance(payload, dict):
        return PayloadShape.OBJECT if payload else PayloadShape.EMPTY
    if isinstance(payload, str):
        return PayloadShape.STRING if payload.strip() else PayloadShape.EMPTY
    raise ClassificationError(f"Unsupported payload type: {type(payload).__name__}")


def _first_text(item: Dict[str, Any], keys) -> str:
    for key in keys:
        value = item.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def extract_from_array(payload: List[Any]) -> List[ClassificationRef]:
    """Array form: code/description fields of each element."""
    refs = []
    for element in payload:
        if isinstance(element, dict):
            name = _first_text(element, _NAME_KEYS)
            code = _first_text(element, _CODE_KEYS)
        elif isinstance(element, str):
            name, code = element.strip(), ""
        elif element is None:
            continue
        else:
            raise ClassificationError(
                f"Unsupported array element: {type(element).__name__}"
            )
        if name:
            refs.append(ClassificationRef(code=code, name=name))
    return refs


def extract_from_object(payload: Dict[str, Any]) -> List[ClassificationRef]:
    """Object form: each key is a name, with no code."""
    refs = []
    for key in payload:
        name = str(key).strip()
        if name:
            refs.append(ClassificationRef(code="", name=name))
    return refs


def extract_from_string(payload: str) -> List[ClassificationRef]:
    """String form: the whole string is one name."""
    return [ClassificationRef(code="", name=payload.strip())]


_EXTRACTORS: Dict[PayloadShape, Callable[[Any], List[ClassificationRef]]] = {
    PayloadShape.ARRAY: extract_from_array,
    PayloadShape.OBJECT: extract_from_object,
    PayloadShape.STRING: extract_from_string,
    PayloadShape.EMPTY: lambda payload: [],
}


def split_region(name: str) -> ClassificationRef:
    """
    Split a region label into code and name.

    Examples:
        "ES511 - Barcelona" → ("ES511", "Barcelona")
        "Andalucía" → ("andaluc_a", "Andalucía")
    """
    name = name.strip()
    match = REGION_CODE_PATTERN.match(name)
    if match:
        code, remainder = match.group(1), match.group(2).strip()
        return ClassificationRef(code=code, name=remainder or name)
    return ClassificationRef(code=generate_code(name), name=name)


def extract_refs(payload: Any, kind: ClassificationKind) -> List[ClassificationRef]:
    """
    Flatten a legacy payload into (code, name) candidates.

    Region names are split into NUTS-style code and name. Duplicates within
    one payload are dropped, keeping first-seen order.

    Args:
        payload: Raw legacy payload
        kind: Classification table the payload feeds

    Returns:
        List of ClassificationRef

    Raises:
        ClassificationError: If the payload is malformed
    """
    refs = _EXTRACTORS[classify_payload(payload)](payload)

    if kind == ClassificationKind.REGION:
        refs = [split_region(ref.name) for ref in refs]

    unique = []
    seen = set()
    for ref in refs:
        if ref not in seen:
            seen.add(ref)
            unique.append(ref)
    return unique


def load_stored_payload(value: Any) -> Any:
    """
    Decode a payload stored as JSON text.

    Raises:
        ClassificationError: If the stored text is not valid JSON
    """
    if value is None or not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError as e:
        raise ClassificationError(f"Stored payload is not valid JSON: {e}") from e
