"""Decide which messages must produce a JSON Schema.

Selection starts from a root list and a default generate flag. Once a message
is selected, every message it can ``$ref`` (message fields, map values) and
every message nested inside it is selected too, even when that message opts
out with ``generate: false``. Otherwise the parent's schema would point at a
definition that never gets built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Set

from protoc_jsonschema.models import FieldKind, Message, ProtoFile
from protoc_jsonschema.options import file_generates_by_default, get_message_options

logger = logging.getLogger(__name__)


def select_messages(
    messages: List[Message],
    default_generate: bool,
    visited: Set[str],
) -> List[Message]:
    """Return the messages that should generate schemas, in traversal order.

    ``visited`` holds full names already selected in this run; it is updated
    in place so repeated calls sharing it never select a message twice and
    cyclic references terminate.
    """
    return _select(messages, default_generate, False, visited)


def _select(
    messages: List[Message],
    default_generate: bool,
    force: bool,
    visited: Set[str],
) -> List[Message]:
    results: List[Message] = []

    for message in messages:
        # Map entries are folded into their owning map field.
        if message.is_map_entry:
            continue

        should_generate = default_generate
        opts = get_message_options(message)
        if opts is not None and opts.generate is not None:
            # A structurally required message cannot opt out.
            if force and not opts.generate:
                logger.debug("Ignoring generate=false on %s: required by a selected parent", message.full_name)
            else:
                should_generate = opts.generate

        if not should_generate:
            continue

        if message.full_name not in visited:
            visited.add(message.full_name)
            results.append(message)
            logger.debug("Selected %s%s", message.full_name, " (forced)" if force else "")

            for dependency in _field_dependencies(message):
                results.extend(_select([dependency], True, True, visited))

        if message.nested_messages:
            results.extend(_select(message.nested_messages, True, True, visited))

    return results


def _field_dependencies(message: Message) -> List[Message]:
    """Messages referenced by the fields of ``message``, in declaration order."""
    dependencies: List[Message] = []
    for field in message.fields:
        if field.kind not in (FieldKind.MESSAGE, FieldKind.GROUP):
            continue
        if field.is_map:
            # The entry's value field (number 2) is the real dependency.
            value = field.map_value()
            if value is not None and value.message is not None:
                dependencies.append(value.message)
        elif field.message is not None:
            dependencies.append(field.message)
    return dependencies


def direct_references(message: Message) -> List[Message]:
    """Messages a schema for ``message`` may reference: field types and nested types."""
    references = _field_dependencies(message)
    references.extend(m for m in message.nested_messages if not m.is_map_entry)
    return references


def is_google_type(message: Message) -> bool:
    """Types from google.* packages are emitted inline by every file that uses them."""
    return message.full_name.startswith("google.")


@dataclass
class FileSelection:
    """Selected messages of one file, split by where their schema code lives."""

    proto_file: ProtoFile
    # Defined in the file itself.
    local: List[Message] = field(default_factory=list)
    # google.* types from other files.
    external: List[Message] = field(default_factory=list)
    # Other files' messages, generated by those files.
    imported: List[Message] = field(default_factory=list)
    # Other files' messages that their own file does not generate.
    ungenerated: List[Message] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.local and not self.external

    @property
    def full_names(self) -> Set[str]:
        return {m.full_name for m in self.local + self.external + self.imported + self.ungenerated}


def _generated_names(proto_file: ProtoFile) -> Set[str]:
    """Full names of the messages whose schema code lives in ``proto_file``'s own module."""
    selected = select_messages(proto_file.messages, file_generates_by_default(proto_file), set())
    return {m.full_name for m in selected if m.source_file == proto_file.path}


def select_file_messages(proto_file: ProtoFile) -> FileSelection:
    """Run selection over a file's messages with the file's generate default."""
    selected = select_messages(proto_file.messages, file_generates_by_default(proto_file), set())
    result = FileSelection(proto_file)
    generated_by: Dict[str, Set[str]] = {}
    for message in selected:
        if message.source_file == proto_file.path:
            result.local.append(message)
        elif is_google_type(message):
            result.external.append(message)
        else:
            if message.source_file not in generated_by:
                owner = proto_file.linked_files.get(message.source_file)
                generated_by[message.source_file] = _generated_names(owner) if owner is not None else set()
            if message.full_name in generated_by[message.source_file]:
                result.imported.append(message)
            else:
                result.ungenerated.append(message)
    logger.debug(
        "%s: %d local, %d external, %d imported, %d ungenerated message(s) selected",
        proto_file.path,
        len(result.local),
        len(result.external),
        len(result.imported),
        len(result.ungenerated),
    )
    return result
