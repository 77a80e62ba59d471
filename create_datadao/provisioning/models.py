"""Data models for repository provisioning."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Capability(BaseModel):
    """What the automation tool can do on this machine right now."""

    available: bool = False
    authenticated: bool = False

    @property
    def usable(self) -> bool:
        return self.available and self.authenticated


class ProvisioningSpec(BaseModel):
    """The two repositories a DataDAO needs, created from their templates."""

    owner: str = Field(default="", description="GitHub user or organisation that owns the copies")
    project_name: str = Field(default="", description="Prefix for the repository names")
    proof_template: str = Field(default="vana-com/vana-satya-proof-template-py")
    refiner_template: str = Field(default="vana-com/vana-data-refinement-template")
    visibility: str = Field(default="public")
    existing_primary_url: str | None = Field(default=None, description="Already provisioned proof repository")
    existing_secondary_url: str | None = Field(default=None, description="Already provisioned refiner repository")

    @property
    def proof_repo(self) -> str:
        return f"{self.project_name}-proof"

    @property
    def refiner_repo(self) -> str:
        return f"{self.project_name}-refiner"


class ProvisioningResult(BaseModel):
    """Outcome of one provisioning attempt. ``None`` marks a resource that failed."""

    primary_resource_url: str | None = None
    secondary_resource_url: str | None = None
    automated: bool = False

    @property
    def any_created(self) -> bool:
        return bool(self.primary_resource_url or self.secondary_resource_url)
