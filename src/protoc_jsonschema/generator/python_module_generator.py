"""Generate Python modules that build JSON Schemas at runtime.

For every selected message a generated module defines two functions:

* ``<Name>_json_schema()`` returns ``{"$ref": ..., "$defs": {...}}`` holding
  the message and every definition it reaches;
* ``<Name>_json_schema_with_defs(defs)`` adds the message to a caller-owned
  ``defs`` dict and returns a ``$ref`` to it.

``<Name>`` is the nested message path joined with ``_`` (``Outer_Inner``).
google.* types used by the file get the same pair under a name prefixed with
the file stem, so two modules importing the same type never clash. Messages
of other files are called through an import of that file's module.
"""

from __future__ import annotations

import json
import keyword
import logging
import math
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader

from protoc_jsonschema.errors import JsonSchemaError, UnresolvedReferenceError
from protoc_jsonschema.models import Message, ProtoFile
from protoc_jsonschema.selection import FileSelection, select_file_messages
from protoc_jsonschema.synthesizer import MessageSchemaPlan, build_message_plan, definition_ref
from protoc_jsonschema.type_mapper import MessageRef

logger = logging.getLogger(__name__)

MODULE_SUFFIX = "_jsonschema"

# Rendered dicts and lists longer than this are split over several lines.
_LINE_WIDTH = 88

_NON_IDENT_RE = re.compile(r"[^0-9A-Za-z_]")


def _identifier(text: str) -> str:
    ident = _NON_IDENT_RE.sub("_", text)
    if not ident or ident[0].isdigit() or keyword.iskeyword(ident):
        ident = "_" + ident
    return ident


def module_name(proto_path: str) -> str:
    """Dotted module name for a proto path: ``users/v1/common.proto`` -> ``users.v1.common_jsonschema``."""
    base = proto_path[: -len(".proto")] if proto_path.endswith(".proto") else proto_path
    parts = [_identifier(part) for part in base.split("/")]
    parts[-1] += MODULE_SUFFIX
    return ".".join(parts)


def module_path(proto_path: str) -> str:
    """Output path of the module, relative to the output directory."""
    return module_name(proto_path).replace(".", "/") + ".py"


def module_alias(proto_path: str) -> str:
    return module_name(proto_path).replace(".", "_")


# -----------------------------------------------------------------------------
# Literal rendering
# -----------------------------------------------------------------------------


def render_literal(value: Any, call_for: Callable[[MessageRef], str], indent: int = 0) -> str:
    """Python source for a schema fragment.

    ``MessageRef`` values become the call expression ``call_for`` returns; a
    reference with sibling keywords becomes ``{**call, "key": ...}``.
    """
    if isinstance(value, MessageRef):
        return call_for(value)
    if isinstance(value, dict):
        items = []
        for k, v in value.items():
            if k == "$ref" and isinstance(v, MessageRef):
                items.append(f"**{call_for(v)}")
            else:
                items.append(f"{json.dumps(k)}: {render_literal(v, call_for, indent + 1)}")
        return _join(items, "{", "}", indent)
    if isinstance(value, list):
        return _join([render_literal(v, call_for, indent + 1) for v in value], "[", "]", indent)
    if isinstance(value, str):
        # JSON string escapes are valid Python escapes.
        return json.dumps(value)
    if isinstance(value, float) and not math.isfinite(value):
        return f'float("{value}")'
    return repr(value)


def _join(items: List[str], open_: str, close: str, indent: int) -> str:
    if not items:
        return open_ + close
    inline = open_ + ", ".join(items) + close
    if "\n" not in inline and len(inline) + 4 * (indent + 1) <= _LINE_WIDTH:
        return inline
    pad = "    " * (indent + 1)
    body = "".join(f"{pad}{item},\n" for item in items)
    return f"{open_}\n{body}{'    ' * indent}{close}"


# -----------------------------------------------------------------------------
# Module generation
# -----------------------------------------------------------------------------


def _get_template_env() -> Environment:
    template_dir = Path(__file__).parent.parent / "templates"
    return Environment(
        loader=FileSystemLoader(str(template_dir)),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


class _FunctionNamer:
    """Names the schema functions of a message as seen from one generated module."""

    def __init__(self, selection: FileSelection):
        self._path = selection.proto_file.path
        self._prefix = _identifier(selection.proto_file.stem)
        self._external = {m.full_name for m in selection.external}
        self._selected = selection.full_names
        self._ungenerated = {m.full_name: m.source_file for m in selection.ungenerated}
        self.imports: Dict[str, str] = {}

    def base_name(self, message: Message) -> str:
        local_name = "_".join(_identifier(part) for part in message.nested_path)
        if message.source_file == self._path:
            return local_name
        if message.full_name in self._external:
            return f"{self._prefix}_{_identifier(message.full_name.replace('.', '_'))}"
        alias = module_alias(message.source_file)
        self.imports[module_name(message.source_file)] = alias
        return f"{alias}.{local_name}"

    def caller(self, owner: str, field_name: str) -> Callable[[MessageRef], str]:
        def call_for(ref: MessageRef) -> str:
            if ref.full_name not in self._selected:
                raise UnresolvedReferenceError(
                    f"references '{ref.full_name}', which is not selected for generation",
                    owner,
                    field_name,
                )
            if ref.full_name in self._ungenerated:
                raise UnresolvedReferenceError(
                    f"references '{ref.full_name}', which {self._ungenerated[ref.full_name]} does not generate",
                    owner,
                    field_name,
                )
            return f"{self.base_name(ref.message)}_json_schema_with_defs(defs)"

        return call_for


def _function_context(plan: MessageSchemaPlan, namer: _FunctionNamer) -> Dict[str, Any]:
    full_name = plan.full_name
    properties: List[Tuple[str, str]] = []
    for name, fragment in plan.properties:
        call_for = namer.caller(full_name, name)
        properties.append((json.dumps(name), render_literal(fragment, call_for, indent=1)))

    constraint = None
    oneof = plan.oneof_constraint()
    if oneof is not None:
        keyword_name, value = oneof
        constraint = (json.dumps(keyword_name), render_literal(value, namer.caller(full_name, ""), indent=1))

    return {
        "base": namer.base_name(plan.message),
        "full_name": full_name,
        "key": json.dumps(full_name),
        "ref": json.dumps(definition_ref(full_name)),
        "skeleton": render_literal(plan.skeleton(), namer.caller(full_name, ""), indent=1),
        "properties": properties,
        "constraint": constraint,
    }


def generate_python_module(proto_file: ProtoFile, version: str = "development") -> Optional[str]:
    """Generate the schema module source for one proto file.

    Returns None when the file selects no message. The whole source is built
    before anything is returned, so a failing message leaves no partial output.
    """
    selection = select_file_messages(proto_file)
    if selection.is_empty:
        logger.info("%s: no messages selected, skipping", proto_file.path)
        return None

    namer = _FunctionNamer(selection)
    functions: List[Dict[str, Any]] = []
    owners: Dict[str, str] = {}
    for message in selection.local + selection.external:
        context = _function_context(build_message_plan(message), namer)
        other = owners.setdefault(context["base"], message.full_name)
        if other != message.full_name:
            raise JsonSchemaError(
                f"schema function '{context['base']}_json_schema' would be generated for both "
                f"'{other}' and '{message.full_name}'",
                message.full_name,
            )
        functions.append(context)

    env = _get_template_env()
    template = env.get_template("jsonschema.py.j2")
    return template.render(
        # Quoted so any path is safe in the header comment and the docstring.
        source=json.dumps(proto_file.path),
        version=version,
        generated_on=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
        imports=sorted(namer.imports.items()),
        functions=functions,
    )


def write_python_module(proto_file: ProtoFile, output_dir: str, version: str = "development") -> Optional[str]:
    """Generate and write one module; return its path, or None if nothing was selected."""
    source = generate_python_module(proto_file, version)
    if source is None:
        return None
    file_path = os.path.join(output_dir, module_path(proto_file.path))
    os.makedirs(os.path.dirname(file_path), exist_ok=True)
    Path(file_path).write_text(source, encoding="utf-8")
    return file_path


def generate_python_modules(
    proto_files: List[ProtoFile],
    output_dir: str,
    version: str = "development",
) -> List[str]:
    """Generate schema modules for all given proto files.

    Returns list of generated file paths.
    """
    generated: List[str] = []
    for proto_file in proto_files:
        file_path = write_python_module(proto_file, output_dir, version)
        if file_path is not None:
            generated.append(file_path)
    return generated
