"""References — typed pointers into the asset store and participant directory.

Entities never hold each other directly. A reference names the namespace,
the type and the instance id, and is resolved by id when a transaction
needs the target. The canonical text form is the fully qualified
identifier (FQI):

    custody.network.Agent#A-001

and the resource URI used in named queries is ``resource:<FQI>``.
"""

from __future__ import annotations

from dataclasses import dataclass

CUSTODY_NAMESPACE = "custody.network"
INSPECTION_NAMESPACE = "inspection.nuclear"

RESOURCE_PREFIX = "resource:"


@dataclass(frozen=True)
class Reference:
    """Pointer to an entity by namespace, type name and identifier."""
    namespace: str
    type_name: str
    identifier: str

    @property
    def fully_qualified_type(self) -> str:
        return f"{self.namespace}.{self.type_name}"

    @property
    def fully_qualified_identifier(self) -> str:
        return f"{self.fully_qualified_type}#{self.identifier}"

    @property
    def uri(self) -> str:
        return RESOURCE_PREFIX + self.fully_qualified_identifier

    def __str__(self) -> str:
        return self.fully_qualified_identifier

    @staticmethod
    def parse(text: str) -> Reference:
        """Parse an FQI or resource URI into a Reference.

        Raises ValueError if the text has no ``#`` separator or no
        namespace before the type name.
        """
        raw = text.strip()
        if raw.startswith(RESOURCE_PREFIX):
            raw = raw[len(RESOURCE_PREFIX):]
        fqt, sep, identifier = raw.partition("#")
        if not sep or not identifier:
            raise ValueError(f"Not a fully qualified identifier: {text!r}")
        namespace, dot, type_name = fqt.rpartition(".")
        if not dot or not namespace or not type_name:
            raise ValueError(f"Missing namespace in identifier: {text!r}")
        return Reference(namespace, type_name, identifier)


def identifier_of(fqi: str) -> str:
    """Return the instance id part of an FQI (text after ``#``)."""
    return Reference.parse(fqi).identifier
