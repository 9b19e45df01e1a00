#!/usr/bin/env python3

from enum import Enum
from ipaddress import IPv4Address
from typing import Union, Optional, Any, TYPE_CHECKING
from dataclasses import dataclass
import binascii
import re

import dpkt

if TYPE_CHECKING:
    from .dhcp4 import DhcpMessage

MAC_LEN = 6


class Mac:
    def __init__(self, mac: Union[str, bytes, "Mac"]) -> None:
        if isinstance(mac, Mac):
            self.val: bytes = mac.val
        elif isinstance(mac, bytes):
            self.val = mac
        elif isinstance(mac, str):
            # Accepts 12:34:56:78:90:12, 12-34-56-78-90-12 and 123456789012
            try:
                self.val = binascii.unhexlify(re.sub("[:-]", "", mac))
            except binascii.Error as err:
                raise ValueError(f"{err}: Invalid Mac address {mac}") from err
        else:
            raise ValueError(
                (
                    f"Value {mac} of type {type(mac)} "
                    "cannot be represented as Mac address"
                )
            )
        if len(self.val) != MAC_LEN:
            raise ValueError(
                "Only MAC-48 addresses are supported, "
                f"got {len(self.val)} bytes"
            )

    def __str__(self) -> str:
        return ":".join(f"{b:02x}" for b in self.val)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)})"

    def __bytes__(self) -> bytes:
        return self.val

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Mac) and self.val == other.val

    def __hash__(self) -> int:
        return hash(self.val)


class MalformedMessage(dpkt.UnpackError):
    """The datagram cannot be decoded as a DHCP message"""


class DhcpMessageError(Exception):
    """A message was used in a way the protocol engine never does"""

    def __init__(
        self, error: str, message: Optional["DhcpMessage"] = None
    ) -> None:
        super().__init__(error)
        self.message = message


class ErrorKind(Enum):
    DECODE = 1
    PROTOCOL = 2
    NO_SUBNET = 3
    POOL_EXHAUSTED = 4
    NO_LEASE = 5


@dataclass
class DHCPResponse:
    message: "DhcpMessage"
    # Network parameters of the pool that produced the reply
    subnet_mask: Optional[IPv4Address] = None
    gateway: Optional[IPv4Address] = None


@dataclass
class DHCPError:
    error: str
    kind: ErrorKind
    client: Optional[Mac]
