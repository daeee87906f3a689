"""Dependency-ordered provisioning of user pods and their resources."""

from userpods.provisioning.provisioner import Provisioner, ProvisioningResult

__all__ = ["Provisioner", "ProvisioningResult"]
