from .base import Operation, ReconcilingOperation
from .command import CommandOperation
from .container import ContainerOperation
from .image import ImageOperation
from .network import NetworkOperation, VolumeOperation
from .package import PackageOperation
from .service import ServiceOperation

OPERATION_REGISTRY = {
    "package": PackageOperation,
    "service": ServiceOperation,
    "network": NetworkOperation,
    "volume": VolumeOperation,
    "image": ImageOperation,
    "container": ContainerOperation,
    "command": CommandOperation,
}

__all__ = [
    "Operation",
    "ReconcilingOperation",
    "PackageOperation",
    "ServiceOperation",
    "NetworkOperation",
    "VolumeOperation",
    "ImageOperation",
    "ContainerOperation",
    "CommandOperation",
    "OPERATION_REGISTRY",
]
