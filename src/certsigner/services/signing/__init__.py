"""Certificate signing request workflow: submission, polling and installation."""
from .client import HttpSigningClient, SigningClient, parse_chain_archive
from .poller import Poller
from .provisioner import Provisioner, ProvisioningResult, ProvisioningState, ProvisioningStatus
from .tracker import RequestTracker

__all__ = [
    "HttpSigningClient",
    "SigningClient",
    "parse_chain_archive",
    "Poller",
    "Provisioner",
    "ProvisioningResult",
    "ProvisioningState",
    "ProvisioningStatus",
    "RequestTracker",
]
