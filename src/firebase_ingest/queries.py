"""
Named query specs and the registry built from the ``refs`` configuration.

Example:
    >>> registry = QueryRegistry.from_refs({
    ...     "users": {"path": "users", "orderBy": "$key", "limitToFirst": 10},
    ... })
    >>> registry["users"].structured()
    {'path': 'users', 'orderBy': '$key', 'limitToFirst': 10}
"""

from collections.abc import Iterator, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.errors import ConfigurationError


class QuerySpec(BaseModel):
    """One named reference to retrieve.

    ``order_by`` and ``limit_to_first`` are forwarded to the server as
    request parameters. Nothing is evaluated locally.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1)
    order_by: str | None = Field(default=None, alias="orderBy")
    limit_to_first: int | None = Field(default=None, alias="limitToFirst", gt=0)

    def structured(self) -> dict[str, Any]:
        """String-keyed map of this query as it appears in event metadata."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"name"})


class QueryRegistry:
    """Ordered, immutable set of QuerySpecs keyed by name."""

    def __init__(self, specs: list[QuerySpec]):
        if not specs:
            raise ConfigurationError("refs must contain at least one query")
        self._specs: dict[str, QuerySpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ConfigurationError(f"Duplicate query name: {spec.name}")
            self._specs[spec.name] = spec

    @classmethod
    def from_refs(cls, refs: Mapping[str, Any]) -> "QueryRegistry":
        if not isinstance(refs, Mapping) or not refs:
            raise ConfigurationError("refs must be a non-empty mapping of name -> query")

        specs = []
        for name, raw in refs.items():
            if not isinstance(raw, Mapping):
                raise ConfigurationError(
                    f"Query '{name}' must be a mapping, got {type(raw).__name__}",
                    context={"query_name": name},
                )
            if "name" in raw:
                raise ConfigurationError(
                    f"Query '{name}' must not set 'name', the ref key is its name",
                    context={"query_name": name},
                )
            try:
                specs.append(QuerySpec(name=str(name), **raw))
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid query '{name}': {e.errors(include_url=False)}",
                    cause=e,
                    context={"query_name": name},
                ) from e
            except TypeError as e:
                # Non-string keys in the raw mapping
                raise ConfigurationError(
                    f"Invalid query '{name}': {e}", cause=e, context={"query_name": name}
                ) from e

        return cls(specs)

    def __iter__(self) -> Iterator[QuerySpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __getitem__(self, name: str) -> QuerySpec:
        return self._specs[name]

    def get(self, name: str) -> QuerySpec | None:
        return self._specs.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._specs)
