# meerkat/feeds/external_ip.py

"""
Public IP address change detection
"""
import ipaddress
import logging
import os
from pathlib import Path
from typing import List, Optional, Union

import httpx

logger = logging.getLogger(__name__)

SERVICE_NAME = "meerkat"
IP_ADDRESS_FILENAME = "ip.address"
RESOLVER_URLS = ["http://ifconfig.io", "https://api.ipify.org"]
DEFAULT_RESOLVER_URL = RESOLVER_URLS[1]
MAX_RESPONSE_LENGTH = len("255.255.255.255\r")
MIN_RESPONSE_LENGTH = len("1.1.1.1\r")


def default_storage_dirs() -> List[Path]:
    return [
        Path("/var/cache") / SERVICE_NAME,
        Path(os.environ.get("HOME", str(Path.home()))) / ".cache" / SERVICE_NAME,
    ]


class IPAddressStore:
    """
    Remembers the last known address across restarts.

    Only an optimisation: failures are logged and otherwise ignored.
    """

    def __init__(self, directories: Optional[List[Union[str, Path]]] = None):
        self.directories = [Path(d) for d in directories] if directories else default_storage_dirs()

    def storage_dir(self) -> Optional[Path]:
        """First usable directory, created if missing"""
        for directory in self.directories:
            if directory.is_dir():
                return directory
            if not directory.exists():
                try:
                    directory.mkdir(mode=0o755)
                    return directory
                except OSError as e:
                    logger.debug(f"Cannot create {directory}: {e}")
        return None

    def read(self) -> Optional[str]:
        directory = self.storage_dir()
        if directory is None:
            return None
        try:
            content = (directory / IP_ADDRESS_FILENAME).read_text(encoding="ascii").strip()
            return str(ipaddress.ip_address(content))
        except (OSError, ValueError, UnicodeDecodeError):
            return None

    def write(self, address: str):
        directory = self.storage_dir()
        if directory is None:
            return
        try:
            (directory / IP_ADDRESS_FILENAME).write_text(address, encoding="ascii")
        except OSError as e:
            logger.warning(f"Failed to persist IP address: {e}")


class PublicIPMonitor:
    """
    Periodic task returning the public address when it changed since the
    last call, "" when unchanged or unknown
    """

    def __init__(self, resolver_url: str = DEFAULT_RESOLVER_URL,
                 store: Optional[IPAddressStore] = None,
                 timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.resolver_url = resolver_url
        self.store = store
        self.timeout = timeout
        self.transport = transport
        self.public_ip: Optional[str] = store.read() if store else None
        if self.public_ip:
            logger.info(f"Last known public IP: {self.public_ip}")

    async def resolve(self) -> str:
        """
        Ask the resolver for the current address

        Raises:
            httpx.HTTPError, ValueError: request failed or reply is not an address
        """
        # ifconfig.io does not like programmatic access
        headers = {"User-Agent": "curl/7.74.0"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(self.resolver_url, headers=headers)
        response.raise_for_status()

        body = response.content
        if not MIN_RESPONSE_LENGTH - 1 <= len(body) <= MAX_RESPONSE_LENGTH:
            raise ValueError(f"unexpected response length {len(body)}")
        return str(ipaddress.ip_address(body.decode("ascii").strip()))

    async def __call__(self) -> str:
        try:
            address = await self.resolve()
        except (httpx.HTTPError, ValueError, UnicodeDecodeError) as e:
            logger.error(f"Error getting public IP: {e}")
            return ""

        if address == self.public_ip:
            return ""
        self.public_ip = address
        if self.store:
            self.store.write(address)
        return address
