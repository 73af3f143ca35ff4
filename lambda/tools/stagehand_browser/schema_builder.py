"""
Build pydantic models for Stagehand extraction.

The model can come from a list of fields, an example document, a JSON Schema
or an importable BaseModel subclass.
"""

import importlib
import json
import keyword
import re
from typing import Any, Dict, List, Literal, Optional, Set, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, create_model

from errors import SchemaError

SCHEMA_SOURCES = ("fieldList", "example", "jsonSchema", "manual")

FIELD_TYPES = {
    "string": str,
    "number": float,
    "boolean": bool,
    "array": List[Any],
    "object": Dict[str, Any],
}

JSON_SCHEMA_TYPES = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
    "null": type(None),
}


class ExtractedData(BaseModel):
    """Root of every generated extraction model"""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


def _model_name(name: str) -> str:
    cleaned = re.sub(r"[^0-9a-zA-Z]+", " ", name).title().replace(" ", "")
    return cleaned or "Extracted"


def _field_name(key: str, taken: Set[str]) -> str:
    """Python attribute name for a document key; the key itself stays the alias"""
    name = re.sub(r"\W", "_", key).lstrip("_")
    if not name or name[0].isdigit() or keyword.iskeyword(name):
        name = f"field_{name}"
    if name.startswith("model_") or hasattr(BaseModel, name):
        name = f"field_{name}"

    candidate, suffix = name, 2
    while candidate in taken:
        candidate, suffix = f"{name}_{suffix}", suffix + 1
    taken.add(candidate)
    return candidate


def _define(definitions: Dict[str, Tuple[Any, Any]], key: str, annotation: Any, required: bool,
            description: Optional[str] = None) -> None:
    name = _field_name(key, set(definitions))
    default = ... if required else None
    if not required:
        annotation = Optional[annotation]
    definitions[name] = (annotation, Field(default, alias=key, description=description))


def _load_json(value: Any, label: str) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Invalid JSON in {label}: {e}") from e


def fields_to_model(fields: List[Dict[str, Any]], model_name: str = "ExtractedData") -> Type[BaseModel]:
    """
    Build a model from a list of field definitions.

    Args:
        fields: Dicts with fieldName, fieldType and optional
        model_name: Name of the generated model

    Returns:
        Pydantic model class
    """
    definitions = {}
    for field in fields:
        name = field.get("fieldName") or field.get("field_name")
        if not name:
            raise SchemaError("Every field needs a fieldName")
        annotation = FIELD_TYPES.get(field.get("fieldType") or field.get("field_type"), Any)
        _define(definitions, name, annotation, required=not field.get("optional", False))

    return create_model(model_name, __base__=ExtractedData, **definitions)


def _infer_type(value: Any, name: str) -> Any:
    if isinstance(value, bool):
        return bool
    if isinstance(value, (int, float)):
        return float
    if isinstance(value, str):
        return str
    if isinstance(value, dict):
        return example_to_model(value, _model_name(name))
    if isinstance(value, list):
        if not value:
            return List[Any]
        return List[_infer_type(value[0], f"{name} item")]
    return Any


def example_to_model(example: Any, model_name: str = "ExtractedData") -> Type[BaseModel]:
    """
    Infer a model from an example JSON document.

    Nested objects become nested models and arrays take the type of their
    first element.
    """
    example = _load_json(example, "Example JSON")
    if not isinstance(example, dict):
        raise SchemaError("Example JSON must be an object")

    definitions: Dict[str, Tuple[Any, Any]] = {}
    for key, value in example.items():
        _define(definitions, key, _infer_type(value, key), required=True)
    return create_model(model_name, __base__=ExtractedData, **definitions)


def _schema_type(schema: Dict[str, Any], name: str) -> Any:
    if not isinstance(schema, dict) or not schema:
        return Any

    if "enum" in schema:
        return Literal[tuple(schema["enum"])]

    variants = schema.get("anyOf") or schema.get("oneOf")
    if variants:
        return Union[tuple(_schema_type(variant, name) for variant in variants)]

    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        return Union[tuple(_schema_type({**schema, "type": t}, name) for t in schema_type)]

    if schema_type == "object" or (schema_type is None and "properties" in schema):
        if not schema.get("properties"):
            return Dict[str, Any]
        return json_schema_to_model(schema, _model_name(name))
    if schema_type == "array":
        return List[_schema_type(schema.get("items", {}), f"{name} item")]

    return JSON_SCHEMA_TYPES.get(schema_type, Any)


def json_schema_to_model(schema: Any, model_name: str = "ExtractedData") -> Type[BaseModel]:
    """
    Translate a JSON Schema object into a model.

    Args:
        schema: JSON Schema (dict or JSON string) whose root type is object
        model_name: Name of the generated model

    Returns:
        Pydantic model class
    """
    schema = _load_json(schema, "JSON Schema")
    if not isinstance(schema, dict) or schema.get("type", "object") != "object":
        raise SchemaError("JSON Schema root must be an object schema")

    required = set(schema.get("required", []))
    definitions: Dict[str, Tuple[Any, Any]] = {}
    for name, prop in schema.get("properties", {}).items():
        annotation = _schema_type(prop, name)
        description = prop.get("description") if isinstance(prop, dict) else None
        _define(definitions, name, annotation, required=name in required, description=description)

    return create_model(model_name, __base__=ExtractedData, **definitions)


def import_model(path: str) -> Type[BaseModel]:
    """Resolve "package.module:ClassName" to a BaseModel subclass"""
    module_name, _, class_name = (path or "").strip().partition(":")
    if not module_name or not class_name:
        raise SchemaError(f"Manual schema must be given as 'module:ClassName', got: {path!r}")

    try:
        model = getattr(importlib.import_module(module_name), class_name)
    except (ImportError, AttributeError) as e:
        raise SchemaError(f"Cannot import schema {path}: {e}") from e

    if not (isinstance(model, type) and issubclass(model, BaseModel)):
        raise SchemaError(f"{path} is not a pydantic model")
    return model


def build_schema(schema_source: str, params: Dict[str, Any]) -> Type[BaseModel]:
    """
    Build the extraction model selected by schema_source.

    Args:
        schema_source: fieldList, example, jsonSchema or manual
        params: Operation parameters holding the matching definition

    Returns:
        Pydantic model class to pass to extract
    """
    if schema_source == "fieldList":
        fields = params.get("fields", [])
        if isinstance(fields, dict):
            fields = fields.get("field", [])
        return fields_to_model(fields)
    if schema_source == "example":
        return example_to_model(params.get("exampleJson", "{}"))
    if schema_source == "jsonSchema":
        return json_schema_to_model(params.get("jsonSchema", "{}"))
    if schema_source == "manual":
        return import_model(params.get("manualModel", ""))

    raise SchemaError(f"Unsupported schema source: {schema_source}")
