"""
Canonical event container and normalization of retrieved values.

Field references are either plain names ("message") or bracket paths
("[@metadata][query_name]") addressing nested mappings.
"""

import copy
import logging
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from firebase_ingest.queries import QuerySpec
from firebase_ingest.schemas import MetadataEnvelope

logger = logging.getLogger(__name__)

TAGS_FIELD = "tags"
TIMESTAMP_FIELD = "@timestamp"

_BRACKET_REF = re.compile(r"\[([^\[\]]+)\]")
_SPRINTF_REF = re.compile(r"%\{([^}]+)\}")


def parse_field_ref(ref: str) -> list[str]:
    """Split a field reference into its path segments."""
    if ref.startswith("["):
        parts = _BRACKET_REF.findall(ref)
        if not parts or "".join(f"[{p}]" for p in parts) != ref:
            raise ValueError(f"Invalid field reference: {ref!r}")
        return parts
    if not ref:
        raise ValueError("Field reference must not be empty")
    return [ref]


class Event:
    """A single output unit handed to the sink.

    Mutable until emitted. The sink takes ownership on emit.
    """

    def __init__(self, data: Mapping[str, Any] | None = None):
        self._fields: dict[str, Any] = dict(data) if data else {}
        self.timestamp = datetime.now(UTC)

    def get(self, ref: str, default: Any = None) -> Any:
        node: Any = self._fields
        for part in parse_field_ref(ref):
            if not isinstance(node, Mapping) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, ref: str, value: Any) -> None:
        parts = parse_field_ref(ref)
        node = self._fields
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    def includes(self, ref: str) -> bool:
        sentinel = object()
        return self.get(ref, sentinel) is not sentinel

    def tag(self, value: str) -> None:
        tags = self._fields.get(TAGS_FIELD)
        if not isinstance(tags, list):
            tags = [] if tags is None else [tags]
            self._fields[TAGS_FIELD] = tags
        if value not in tags:
            tags.append(value)

    @property
    def tags(self) -> list[str]:
        return list(self._fields.get(TAGS_FIELD) or [])

    def sprintf(self, template: str) -> str:
        """Substitute ``%{field}`` references with values from this event.

        Unresolved references are left as-is.
        """

        def replacer(match: re.Match) -> str:
            ref = match.group(1)
            key = ref if ref.startswith("[") else f"[{ref}]"
            try:
                value = self.get(key)
            except ValueError:
                return match.group(0)
            if value is None:
                return match.group(0)
            return str(value)

        return _SPRINTF_REF.sub(replacer, template)

    def to_dict(self) -> dict[str, Any]:
        body = copy.deepcopy(self._fields)
        body[TIMESTAMP_FIELD] = self.timestamp.isoformat()
        return body

    def __repr__(self) -> str:
        return f"Event({self._fields!r})"


class EventNormalizer:
    """Turns retrieved values into Events with provenance metadata.

    Args:
        host: Host name recorded in the metadata envelope
        target: Field to nest retrieved data under (event root when None)
        metadata_target: Field for the metadata envelope; None or "" disables it
        tags: Tags added to every event
        add_field: Fields set on every event; values may use %{field} references
    """

    def __init__(
        self,
        host: str,
        target: str | None = None,
        metadata_target: str | None = "@metadata",
        tags: Iterable[str] = (),
        add_field: Mapping[str, str] | None = None,
    ):
        self.host = host
        self.target = target or None
        self.metadata_target = metadata_target or None
        self.tags = list(tags)
        self.add_field = dict(add_field or {})

    def normalize(
        self,
        name: str,
        query: QuerySpec,
        event_kind: str,
        data: Any,
        elapsed: float | None,
    ) -> Event:
        if isinstance(data, Mapping):
            body = copy.deepcopy(dict(data))
        else:
            body = {"value": data}

        if self.target:
            event = Event()
            event.set(self._ref(self.target), body)
        else:
            event = Event(body)
        self.apply_metadata(event, name, query, event_kind, elapsed)
        self.decorate(event)
        return event

    def build_metadata(
        self,
        name: str,
        query: QuerySpec,
        event_kind: str,
        elapsed: float | None,
    ) -> MetadataEnvelope:
        return MetadataEnvelope(
            host=self.host,
            event=event_kind,
            query_name=name,
            query_spec=query.structured(),
            runtime_seconds=elapsed,
        )

    def apply_metadata(
        self,
        event: Event,
        name: str,
        query: QuerySpec,
        event_kind: str,
        elapsed: float | None,
    ) -> None:
        if not self.metadata_target:
            return
        envelope = self.build_metadata(name, query, event_kind, elapsed)
        event.set(self._ref(self.metadata_target), envelope.model_dump())

    def decorate(self, event: Event) -> None:
        """Apply configured tags and add_field entries."""
        for tag in self.tags:
            event.tag(tag)
        for field, template in self.add_field.items():
            value = event.sprintf(template) if isinstance(template, str) else template
            event.set(self._ref(event.sprintf(field)), value)

    @staticmethod
    def _ref(field: str) -> str:
        return field if field.startswith("[") else f"[{field}]"
