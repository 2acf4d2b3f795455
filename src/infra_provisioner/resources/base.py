"""Declared resource specification."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from infra_provisioner.resources.refs import Reference, find_references


class ResourceSpec(BaseModel):
    """One declared infrastructure object and its desired attributes.

    Specs are pure data - they define the desired state. Providers know how to
    CRUD them. Attribute values may contain ``${name.attr}`` references to
    other specs; those become implicit dependencies.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: str = Field(pattern=r"^[a-zA-Z][a-zA-Z0-9_]*$")
    name: str = Field(pattern=r"^[a-zA-Z0-9_\-]+$")
    attributes: dict[str, Any] = Field(default_factory=dict)

    # Explicit dependencies, by logical name.
    depends_on: list[str] = Field(default_factory=list)

    def references(self) -> list[Reference]:
        """References found in the attribute values."""
        return find_references(self.attributes)

    def dependency_names(self) -> list[str]:
        """Explicit and implicit dependencies, by logical name, without duplicates."""
        names = list(self.depends_on)
        for ref in self.references():
            if ref.name not in names:
                names.append(ref.name)
        return names

    @computed_field  # type: ignore[prop-decorator]
    @property
    def address(self) -> str:
        """Unique address for this resource (e.g., 'virtual_network.vnet')."""
        return f"{self.kind}.{self.name}"
