"""create-datadao provisioning module.

Creates the GitHub repositories for the proof and refiner components, through
the ``gh`` CLI when possible and by guided manual setup otherwise.
"""

from .github import GitHubProvisioner
from .models import Capability, ProvisioningResult, ProvisioningSpec

__all__ = [
    "GitHubProvisioner",
    "Capability",
    "ProvisioningResult",
    "ProvisioningSpec",
]
