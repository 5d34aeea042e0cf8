"""Device address configuration and base URL resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_ADDRESS = "24587CEB4834"
DEFAULT_TIMEOUT = 10  # seconds

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class DeviceConfig:
    """Connection settings for one device.

    `address` is the hardware address (or hostname fragment) the device
    announces over mDNS. The settings store that persists it lives
    outside this package; pass a new config, or call
    `AddressResolver.update`, to change devices. `base_url` overrides the
    mDNS name, e.g. for a device reached by IP.
    """

    address: str = DEFAULT_ADDRESS
    base_url: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    token: Optional[str] = None
    max_retries: int = 0


def base_url_for(address: str) -> str:
    return f"http://{address}.local"


class AddressResolver:
    """Turns the configured device address into the API base URL.

    No escaping or reachability check happens here; a bad address
    surfaces later as a transport failure.
    """

    def __init__(self, config: DeviceConfig) -> None:
        self._config = config

    @property
    def config(self) -> DeviceConfig:
        return self._config

    @property
    def address(self) -> str:
        return self._config.address

    @property
    def base_url(self) -> str:
        if self._config.base_url:
            return self._config.base_url.rstrip("/")
        return base_url_for(self._config.address)

    def update(self, address: str) -> str:
        """Switch to another device address and return the new base URL."""
        self._config = replace(self._config, address=address, base_url=None)
        _LOGGER.debug("Device address changed, base URL is now %s", self.base_url)
        return self.base_url
