"""Interface to the device layer that supplies readings."""
from abc import ABC, abstractmethod
from importlib import import_module
from typing import List, Optional, Tuple
import logging

from aranet_sync.config import DeviceConfig
from aranet_sync.passkey import PasskeyMediator
from aranet_sync.series import Reading

logger = logging.getLogger(__name__)


class Acquirer(ABC):
    """
    Reads the latest record and the stored history from a device.

    Implementations own the connection, encryption and pairing. When the
    device needs pairing they call ``passkey.request_passkey(...)`` and block
    until it returns.
    """

    def __init__(self, config: DeviceConfig, passkey: PasskeyMediator):
        self.config = config
        self.passkey = passkey

    @abstractmethod
    def acquire(self, timeout: float) -> Tuple[Optional[Reading], List[Reading]]:
        """
        Read data from the device.

        Args:
            timeout: Seconds the whole read may take

        Returns:
            (latest reading or None, all stored readings in any order)
        """


def load_acquirer(config: DeviceConfig, passkey: PasskeyMediator) -> Acquirer:
    """Instantiate the acquirer class named by ``config.acquirer``."""
    if not config.acquirer:
        raise ValueError("device.acquirer must name an Acquirer class as 'module:ClassName'")

    module_name, sep, class_name = config.acquirer.partition(":")
    if not sep or not module_name or not class_name:
        raise ValueError(f"Invalid acquirer reference {config.acquirer!r}, expected 'module:ClassName'")

    module = import_module(module_name)
    cls = getattr(module, class_name, None)
    if cls is None:
        raise ValueError(f"Module {module_name!r} has no attribute {class_name!r}")
    if not (isinstance(cls, type) and issubclass(cls, Acquirer)):
        raise ValueError(f"{config.acquirer!r} is not an Acquirer subclass")

    logger.info(f"Using acquirer {config.acquirer} for device {config.address}")
    return cls(config, passkey)
