"""Build JSON Schema (Draft 2020-12) documents for proto messages.

Every message schema lives in a definitions registry (``$defs``) keyed by the
message's full name. A message moves through three states while it is built:

* unvisited: not in the registry yet;
* registered: its (still incomplete) schema was inserted into the registry
  before any field is processed;
* complete: all properties and oneof constraints are filled in.

Requests for a registered or complete message return a ``$ref`` right away,
which is what lets self-referencing and mutually referencing messages
terminate.

The schema handed to callers is never the registry entry itself but a fresh
``{"$ref": ..., "$defs": registry}`` node, so the returned object never
contains itself.
"""

from __future__ import annotations

import logging
import textwrap
from dataclasses import dataclass, field
from typing import Any, Collection, Dict, List, Optional, Tuple, Union

from protoc_jsonschema.errors import JsonSchemaError, UnresolvedReferenceError
from protoc_jsonschema.models import Field, Message
from protoc_jsonschema.options import FieldJsonSchemaOptions, get_field_options, is_ignored
from protoc_jsonschema.type_mapper import JS_OBJECT, FieldSchemaConfig, MessageRef, field_config

logger = logging.getLogger(__name__)

SCHEMA_DIALECT = "https://json-schema.org/draft/2020-12/schema"

Schema = Dict[str, Any]
# A rendered property: a plain reference, or a schema that may hold references.
Fragment = Union[MessageRef, Schema]
Registry = Dict[str, Schema]


def definition_ref(full_name: str) -> str:
    return f"#/$defs/{full_name}"


def ref_node(full_name: str) -> Schema:
    return {"$ref": definition_ref(full_name)}


def title_and_description(comments: str) -> Tuple[str, str]:
    """Split leading comments into a title and a description.

    The first paragraph is the title when the comment has a blank line;
    otherwise the whole comment is the description.
    """
    text = comments.replace("\r\n", "\n").strip("\n")
    text = textwrap.dedent(text).strip()
    if not text:
        return "", ""
    parts = text.split("\n\n", 1)
    if len(parts) == 2:
        return parts[0].strip(), parts[1].strip()
    return "", text


# -----------------------------------------------------------------------------
# Field rendering
# -----------------------------------------------------------------------------


def _apply_value_constraints(schema: Schema, cfg: FieldSchemaConfig, opts: FieldJsonSchemaOptions) -> None:
    """Add value-level keywords (format, pattern, bounds, enum) to ``schema``."""
    fmt = opts.format or cfg.format
    if fmt:
        schema["format"] = fmt

    pattern = opts.pattern or cfg.pattern
    if pattern:
        schema["pattern"] = pattern

    if opts.content_encoding:
        schema["contentEncoding"] = opts.content_encoding
    elif cfg.is_bytes:
        schema["contentEncoding"] = "base64"

    if opts.content_media_type:
        schema["contentMediaType"] = opts.content_media_type

    if opts.minimum is not None:
        schema["exclusiveMinimum" if opts.exclusive_minimum else "minimum"] = opts.minimum
    if opts.maximum is not None:
        schema["exclusiveMaximum" if opts.exclusive_maximum else "maximum"] = opts.maximum

    if opts.min_length is not None:
        schema["minLength"] = opts.min_length
    if opts.max_length is not None:
        schema["maxLength"] = opts.max_length

    if cfg.enum_values:
        schema["enum"] = list(cfg.enum_values)


def field_schema(cfg: FieldSchemaConfig, opts: Optional[FieldJsonSchemaOptions] = None) -> Fragment:
    """Render a field config, applying field option overrides.

    Title and description options replace the comment-derived values; the
    constraint options add keywords. Container constraints go on the array or
    map itself, value constraints on its items / values.
    """
    is_plain_ref = cfg.message_ref is not None and not cfg.type_name and cfg.nested is None
    if is_plain_ref and opts is None:
        return cfg.message_ref

    opts = opts or FieldJsonSchemaOptions()
    schema: Schema = {}
    if is_plain_ref:
        schema["$ref"] = cfg.message_ref
    if cfg.type_name:
        schema["type"] = cfg.type_name

    title = opts.title or cfg.title
    if title:
        schema["title"] = title
    description = opts.description or cfg.description
    if description:
        schema["description"] = description

    if opts.min_items is not None:
        schema["minItems"] = opts.min_items
    if opts.max_items is not None:
        schema["maxItems"] = opts.max_items
    if opts.unique_items:
        schema["uniqueItems"] = True
    if opts.min_properties is not None:
        schema["minProperties"] = opts.min_properties
    if opts.max_properties is not None:
        schema["maxProperties"] = opts.max_properties

    if cfg.nested is not None:
        target = "additionalProperties" if cfg.type_name == JS_OBJECT else "items"
        if cfg.nested.message_ref is not None:
            schema[target] = cfg.nested.message_ref
        else:
            element: Schema = {}
            if cfg.nested.type_name:
                element["type"] = cfg.nested.type_name
            elif cfg.nested.nested is None:
                element["type"] = JS_OBJECT
            _apply_value_constraints(element, cfg.nested, opts)
            schema[target] = element
    else:
        _apply_value_constraints(schema, cfg, opts)

    if cfg.property_names_pattern:
        schema["propertyNames"] = {"pattern": cfg.property_names_pattern}

    return schema


def is_required(f: Field) -> bool:
    """Singular fields outside any oneof and without `optional` are required.

    Lists and maps never are: an absent container is an absent key.
    """
    return f.oneof is None and not f.has_optional_keyword and not f.is_list and not f.is_map


# -----------------------------------------------------------------------------
# Message plans
# -----------------------------------------------------------------------------


@dataclass
class MessageSchemaPlan:
    """Everything needed to build one message schema, references unresolved."""

    message: Message
    title: str = ""
    description: str = ""
    required: List[str] = field(default_factory=list)
    properties: List[Tuple[str, Fragment]] = field(default_factory=list)
    oneof_groups: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return self.message.full_name

    def skeleton(self) -> Schema:
        """The schema registered before any property is added."""
        schema: Schema = {"type": JS_OBJECT}
        if self.title:
            schema["title"] = self.title
        if self.description:
            schema["description"] = self.description
        schema["properties"] = {}
        if self.required:
            schema["required"] = list(self.required)
        return schema

    def oneof_constraint(self) -> Optional[Tuple[str, List[Schema]]]:
        """``("oneOf", [...])`` for one group, ``("allOf", [...])`` for several."""
        if not self.oneof_groups:
            return None
        names = sorted(self.oneof_groups)
        if len(names) == 1:
            return "oneOf", _one_of(self.oneof_groups[names[0]])
        return "allOf", [{"oneOf": _one_of(self.oneof_groups[name])} for name in names]


def _one_of(members: List[str]) -> List[Schema]:
    return [{"required": [member]} for member in members]


def build_message_plan(message: Message) -> MessageSchemaPlan:
    """Render every field of ``message``; ignored fields are left out entirely."""
    title, description = title_and_description(message.leading_comments)
    plan = MessageSchemaPlan(message=message, title=title, description=description)

    for f in message.fields:
        if is_ignored(f):
            continue
        if is_required(f):
            plan.required.append(f.name)
        if f.oneof is not None and not f.oneof.is_synthetic:
            plan.oneof_groups.setdefault(f.oneof.name, []).append(f.name)

        field_title, field_description = title_and_description(f.leading_comments)
        try:
            cfg = field_config(f, field_title, field_description)
        except JsonSchemaError as exc:
            raise type(exc)(exc.reason, message.full_name, exc.field_name or f.name) from exc
        plan.properties.append((f.name, field_schema(cfg, get_field_options(f))))

    return plan


# -----------------------------------------------------------------------------
# In-memory synthesis
# -----------------------------------------------------------------------------


class SchemaSynthesizer:
    """Builds message schemas into a caller-owned definitions registry.

    ``selected`` is the set of full names chosen for generation. When given,
    referencing anything outside it raises UnresolvedReferenceError instead
    of producing a schema with a dangling ``$ref``.
    """

    def __init__(self, selected: Optional[Collection[str]] = None):
        self._selected = frozenset(selected) if selected is not None else None
        self._plans: Dict[str, MessageSchemaPlan] = {}

    def json_schema(self, message: Message) -> Schema:
        """Return the ref-as-root schema for ``message`` with a fresh registry."""
        defs: Registry = {}
        self.json_schema_with_defs(message, defs)
        root = ref_node(message.full_name)
        root["$defs"] = defs
        return root

    def json_schema_with_defs(self, message: Message, defs: Registry) -> Schema:
        """Populate ``defs`` with ``message`` and its dependencies; return a reference."""
        key = message.full_name
        if key in defs:
            return ref_node(key)

        plan = self.plan(message)
        schema = plan.skeleton()
        # Registered before the fields so a message containing itself finds its own entry.
        defs[key] = schema
        logger.debug("Registered %s", key)

        for name, fragment in plan.properties:
            schema["properties"][name] = self._resolve(fragment, defs, key, name)

        constraint = plan.oneof_constraint()
        if constraint is not None:
            keyword, value = constraint
            schema[keyword] = value

        logger.debug("Completed %s", key)
        return ref_node(key)

    def plan(self, message: Message) -> MessageSchemaPlan:
        plan = self._plans.get(message.full_name)
        if plan is None:
            plan = build_message_plan(message)
            self._plans[message.full_name] = plan
        return plan

    def _resolve(self, value: Any, defs: Registry, owner: str, field_name: str) -> Any:
        if isinstance(value, MessageRef):
            if self._selected is not None and value.full_name not in self._selected:
                raise UnresolvedReferenceError(
                    f"references '{value.full_name}', which is not selected for generation",
                    owner,
                    field_name,
                )
            return self.json_schema_with_defs(value.message, defs)
        if isinstance(value, dict):
            resolved: Schema = {}
            for k, v in value.items():
                if k == "$ref" and isinstance(v, MessageRef):
                    resolved.update(self._resolve(v, defs, owner, field_name))
                else:
                    resolved[k] = self._resolve(v, defs, owner, field_name)
            return resolved
        if isinstance(value, list):
            return [self._resolve(item, defs, owner, field_name) for item in value]
        return value
