#!/usr/bin/env python3

"""
DHCP option stream (RFC 2132) and relay agent sub-options (RFC 3046)

An option is encoded as a code octet, a length octet and `length` value
octets. PAD (0) carries no length and END (255) terminates the stream.

 code   len   value
+-----+-----+-----+-----+---
|  c  |  n  |  d1 |  d2 | ...
+-----+-----+-----+-----+---
"""

import struct
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Any

from dpkt import dhcp

from .logmgr import logger

DHCP_OPT_PAD = 0
DHCP_OPT_END = 255
DHCP_OPT_RELAY_AGENT_INFO = 82

# Relay agent information sub-options: RFC 3046 Section 2.0
RELAY_SUBOPT_CIRCUIT_ID = 1
RELAY_SUBOPT_REMOTE_ID = 2

MAX_OPTION_LEN = 255


def parse_sub_options(buf: bytes) -> List[Tuple[int, bytes]]:
    """
    Split a sub-option block into (type, value) tuples.
    A trailing lone type octet is dropped and a value cut short by
    the end of the block is returned truncated.
    """
    l = []
    while len(buf) >= 2:
        t = buf[0]
        n = buf[1]
        l.append((t, buf[2 : 2 + n]))
        buf = buf[2 + n :]
    return l


def pack_sub_options(subopts: Iterable[Tuple[int, bytes]]) -> bytes:
    return b"".join(
        struct.pack("BB%is" % len(data), t, len(data), data)
        for t, data in subopts
    )


@dataclass
class RelayAgentInfo:
    circuit_id: Optional[str] = None
    remote_id: Optional[str] = None

    @classmethod
    def from_bytes(cls, buf: bytes) -> "RelayAgentInfo":
        info = cls()
        for t, data in parse_sub_options(buf):
            if t == RELAY_SUBOPT_CIRCUIT_ID:
                info.circuit_id = data.decode("ascii", errors="replace")
            elif t == RELAY_SUBOPT_REMOTE_ID:
                info.remote_id = data.decode("ascii", errors="replace")
            else:
                logger.debug("Ignoring relay agent sub-option %d", t)
        return info

    def __bytes__(self) -> bytes:
        subopts = []
        if self.circuit_id is not None:
            subopts.append(
                (RELAY_SUBOPT_CIRCUIT_ID, self.circuit_id.encode("ascii"))
            )
        if self.remote_id is not None:
            subopts.append(
                (RELAY_SUBOPT_REMOTE_ID, self.remote_id.encode("ascii"))
            )
        return pack_sub_options(subopts)


class OptionTable:
    """
    Raw option values keyed by option code.

    Built from the (code, value) tuples dpkt.dhcp.DHCP parses and
    iterated the same way when dpkt packs the message. A code appearing
    more than once on the wire keeps the last value. Options are packed
    in the order they were first set.
    """

    def __init__(self, opts: Iterable[Tuple[int, bytes]] = ()) -> None:
        self._opts: Dict[int, bytes] = {}
        for t, data in opts:
            self.set_raw(t, data)

    def __contains__(self, t: object) -> bool:
        return t in self._opts

    def __len__(self) -> int:
        return len(self._opts)

    def __iter__(self) -> Iterator[Tuple[int, bytes]]:
        return iter(list(self._opts.items()))

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, OptionTable) and self._opts == other._opts

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self._opts.items())})"

    def get_raw(self, t: int) -> Optional[bytes]:
        return self._opts.get(t)

    def set_raw(self, t: int, data: bytes) -> None:
        if not DHCP_OPT_PAD < t < DHCP_OPT_END:
            raise ValueError(f"Option code {t} cannot carry a value")
        if len(data) > MAX_OPTION_LEN:
            raise ValueError(
                f"Option {t} value of {len(data)} octets is too long"
            )
        self._opts[t] = bytes(data)

    def remove(self, t: int) -> None:
        self._opts.pop(t, None)

    def _get_struct(self, t: int, fmt: str) -> Optional[int]:
        data = self._opts.get(t)
        if data is None:
            return None
        try:
            val: int = struct.unpack(fmt, data)[0]
        except struct.error:
            # eg: a 1 octet message type option received with 2 octets
            logger.debug("Option %d has unexpected length %d", t, len(data))
            return None
        return val

    def get_uint8(self, t: int) -> Optional[int]:
        return self._get_struct(t, "!B")

    def set_uint8(self, t: int, val: int) -> None:
        self.set_raw(t, struct.pack("!B", val))

    def get_uint16(self, t: int) -> Optional[int]:
        return self._get_struct(t, "!H")

    def set_uint16(self, t: int, val: int) -> None:
        self.set_raw(t, struct.pack("!H", val))

    def get_uint32(self, t: int) -> Optional[int]:
        return self._get_struct(t, "!I")

    def set_uint32(self, t: int, val: int) -> None:
        self.set_raw(t, struct.pack("!I", val))

    def get_address(self, t: int) -> Optional[IPv4Address]:
        data = self._opts.get(t)
        if data is None:
            return None
        try:
            return IPv4Address(data)
        except ValueError as err:
            logger.debug("%s: Option %d is not an IPv4 address", err, t)
            return None

    def set_address(self, t: int, addr: IPv4Address) -> None:
        if not isinstance(addr, IPv4Address):
            raise ValueError(
                f"Only IPv4 addresses are supported, got {addr!r}"
            )
        self.set_raw(t, addr.packed)

    def get_string(self, t: int) -> Optional[str]:
        data = self._opts.get(t)
        if data is None:
            return None
        # Some clients NUL terminate their strings
        return data.rstrip(b"\x00").decode("ascii", errors="replace")

    def set_string(self, t: int, val: str) -> None:
        self.set_raw(t, val.encode("ascii"))

    @property
    def message_type(self) -> Optional[int]:
        return self.get_uint8(dhcp.DHCP_OPT_MSGTYPE)

    @message_type.setter
    def message_type(self, mtype: int) -> None:
        self.set_uint8(dhcp.DHCP_OPT_MSGTYPE, mtype)

    @property
    def requested_address(self) -> Optional[IPv4Address]:
        return self.get_address(dhcp.DHCP_OPT_REQ_IP)

    @requested_address.setter
    def requested_address(self, addr: IPv4Address) -> None:
        self.set_address(dhcp.DHCP_OPT_REQ_IP, addr)

    @property
    def server_identifier(self) -> Optional[IPv4Address]:
        return self.get_address(dhcp.DHCP_OPT_SERVER_ID)

    @server_identifier.setter
    def server_identifier(self, addr: IPv4Address) -> None:
        self.set_address(dhcp.DHCP_OPT_SERVER_ID, addr)

    @property
    def lease_time(self) -> Optional[int]:
        return self.get_uint32(dhcp.DHCP_OPT_LEASE_SEC)

    @lease_time.setter
    def lease_time(self, seconds: int) -> None:
        self.set_uint32(dhcp.DHCP_OPT_LEASE_SEC, seconds)

    @property
    def message(self) -> Optional[str]:
        return self.get_string(dhcp.DHCP_OPT_MESSAGE)

    @message.setter
    def message(self, text: str) -> None:
        self.set_string(dhcp.DHCP_OPT_MESSAGE, text)

    @property
    def relay_agent_info(self) -> Optional[RelayAgentInfo]:
        data = self._opts.get(DHCP_OPT_RELAY_AGENT_INFO)
        if data is None:
            return None
        return RelayAgentInfo.from_bytes(data)
