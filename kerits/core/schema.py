# kerits/core/schema.py
"""
Credential schemas.

A schema is a JSON Schema document whose `$id` is the SAID of the document
itself, so a credential's `s` field pins the exact schema its attributes
were checked against. Validation is delegated to `jsonschema`, using the
draft named by `$schema` (draft-07 when absent).

    schema = Schema.create({"name": {"type": "string"}}, required=["name"])
    schema.validate({"name": "Alice"})
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import jsonschema

from kerits.core import said as saids
from kerits.core.canon import canonical_json_str
from kerits.core.errors import MalformedInput, SAIDMismatch, SchemaViolation

SCHEMA_LABEL = "$id"
DRAFT_07 = "http://json-schema.org/draft-07/schema#"


def _validator_class(sed: Dict[str, Any]):
    return jsonschema.validators.validator_for(sed, default=jsonschema.Draft7Validator)


@dataclass(frozen=True)
class Schema:
    sed: Dict[str, Any]

    @property
    def said(self) -> str:
        return self.sed[SCHEMA_LABEL]

    @property
    def title(self) -> Optional[str]:
        return self.sed.get("title")

    @property
    def raw(self) -> str:
        return canonical_json_str(self.sed)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.sed)

    def verify(self) -> bool:
        return saids.verify(self.sed, label=SCHEMA_LABEL)

    def errors(self, data: Any) -> List[str]:
        """Every validation error for `data`, as 'path: message'."""
        validator = _validator_class(self.sed)(self.sed)
        found = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
        return [f"{'/'.join(str(p) for p in e.absolute_path) or '<root>'}: {e.message}" for e in found]

    def validate(self, data: Any) -> None:
        if not self.verify():
            raise SAIDMismatch(
                f"Schema $id {self.said} does not match its content",
                expected=saids.derive(self.sed, label=SCHEMA_LABEL), actual=self.said,
            )
        errors = self.errors(data)
        if errors:
            raise SchemaViolation(
                f"Data does not satisfy schema {self.said}: {errors[0]}"
                + (f" (and {len(errors) - 1} more)" if len(errors) > 1 else ""),
                errors,
            )

    @classmethod
    def create(
        cls,
        properties: Mapping[str, Any],
        required: Sequence[str] = (),
        title: Optional[str] = None,
        description: Optional[str] = None,
        additional_properties: Optional[bool] = None,
    ) -> "Schema":
        """Object schema over credential attributes, with its SAID in `$id`."""
        sed: Dict[str, Any] = {
            SCHEMA_LABEL: "",
            "$schema": DRAFT_07,
            "type": "object",
            "properties": dict(properties),
        }
        if title:
            sed["title"] = title
        if description:
            sed["description"] = description
        if required:
            sed["required"] = list(required)
        if additional_properties is not None:
            sed["additionalProperties"] = additional_properties
        return cls.from_dict(saids.saidify(sed, label=SCHEMA_LABEL))

    @classmethod
    def from_dict(cls, sed: Dict[str, Any]) -> "Schema":
        if not isinstance(sed, dict):
            raise MalformedInput("Schema must be a JSON object")
        if not isinstance(sed.get(SCHEMA_LABEL), str):
            raise MalformedInput("Schema must have a string $id")
        if "type" not in sed:
            raise MalformedInput("Schema must have a type")
        try:
            _validator_class(sed).check_schema(sed)
        except jsonschema.SchemaError as e:
            raise MalformedInput(f"Invalid JSON Schema: {e.message}") from e
        return cls(sed=dict(sed))
