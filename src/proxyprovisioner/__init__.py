"""
proxyprovisioner - one-shot provisioning of a containerized 3proxy HTTP proxy
"""

__version__ = "0.1.0"

from .core import Provisioner
from .errors import ProvisionerError

__all__ = ["Provisioner", "ProvisionerError"]
