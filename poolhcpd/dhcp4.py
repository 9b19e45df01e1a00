#!/usr/bin/env python3

"""
DHCPv4 message codec: RFC 2131 Section 2
"""

from ipaddress import IPv4Address
from typing import Any, Dict

import dpkt
from dpkt import dhcp

from .datatypes import Mac, MalformedMessage, MAC_LEN
from .options import DHCP_OPT_END, DHCP_OPT_PAD, OptionTable

dhcp_type_to_str: Dict[int, str] = {
    dhcp.DHCPDISCOVER: "DHCPDISCOVER",
    dhcp.DHCPOFFER: "DHCPOFFER",
    dhcp.DHCPREQUEST: "DHCPREQUEST",
    dhcp.DHCPDECLINE: "DHCPDECLINE",
    dhcp.DHCPACK: "DHCPACK",
    dhcp.DHCPNAK: "DHCPNAK",
    dhcp.DHCPRELEASE: "DHCPRELEASE",
    dhcp.DHCPINFORM: "DHCPINFORM",
}

# 99.130.83.99, RFC 2132 Section 2
MAGIC_COOKIE = IPv4Address(dhcp.DHCP_MAGIC)

OPTIONS_OFFSET = 240
MIN_MESSAGE_LEN = 244
CHADDR_LEN = 16
SNAME_LEN = 64
FILE_LEN = 128

# Leftmost bit of the flags field, RFC 2131 Figure 2
BROADCAST_FLAG = 0x8000

# dpkt fills xid, chaddr, sname and file with values no reply carries
BOOTP_DEFAULTS: Dict[str, Any] = {
    "xid": 0,
    "chaddr": bytes(MAC_LEN),
    "sname": b"",
    "file": b"",
}


def ipv4_to_int(addr: Any) -> int:
    if not isinstance(addr, IPv4Address):
        raise ValueError(f"Only IPv4 addresses are supported, got {addr!r}")
    return int(addr)


def mtype_to_str(mtype: Any) -> str:
    return dhcp_type_to_str.get(mtype, str(mtype))


def check_option_lengths(buf: bytes) -> None:
    """
    Raise MalformedMessage if an option of the stream lacks its length
    octet or its value runs past the end of the datagram
    """
    while buf and buf[0] != DHCP_OPT_END:
        t = buf[0]
        if t == DHCP_OPT_PAD:
            buf = buf[1:]
            continue
        if len(buf) < 2:
            raise MalformedMessage(f"Option {t} has no length octet")
        n = buf[1]
        if len(buf) < 2 + n:
            raise MalformedMessage(
                f"Option {t} truncated: {len(buf) - 2} of {n} octets"
            )
        buf = buf[2 + n :]


class DhcpMessage(dhcp.DHCP):
    """
    0                   1                   2                   3
    0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
    +---------------+---------------+---------------+---------------+
    |     op (1)    |    hrd (1)    |    hln (1)    |   hops (1)    |
    +---------------+---------------+---------------+---------------+
    |                            xid (4)                            |
    +-------------------------------+-------------------------------+
    |           secs (2)            |           flags (2)           |
    +-------------------------------+-------------------------------+
    |                          ciaddr  (4)                          |
    +---------------------------------------------------------------+
    |                          yiaddr  (4)                          |
    +---------------------------------------------------------------+
    |                          siaddr  (4)                          |
    +---------------------------------------------------------------+
    |                          giaddr  (4)                          |
    +---------------------------------------------------------------+
    |                          chaddr  (16)                         |
    +---------------------------------------------------------------+
    |                          sname   (64)                         |
    +---------------------------------------------------------------+
    |                          file    (128)                        |
    +---------------------------------------------------------------+
    |                          magic cookie (4)                     |
    +---------------------------------------------------------------+
    |                          options (variable)                   |
    +---------------------------------------------------------------+

    The header layout and the option walk are dpkt's. `opts` is an
    OptionTable, which dpkt packs like its own list of (code, value)
    tuples.
    """

    opts: OptionTable

    def __init__(self, *args: bytes, **kwargs: Any) -> None:
        self.opts = OptionTable()
        if not args:
            kwargs = {**BOOTP_DEFAULTS, **kwargs}
        dpkt.Packet.__init__(self, *args, **kwargs)

    def unpack(self, buf: bytes) -> None:
        if len(buf) < MIN_MESSAGE_LEN:
            raise dpkt.NeedData(
                f"got {len(buf)} octets, {MIN_MESSAGE_LEN} needed at least"
            )
        cookie = buf[OPTIONS_OFFSET - 4 : OPTIONS_OFFSET]
        if cookie != MAGIC_COOKIE.packed:
            raise MalformedMessage(
                f"Wrong magic cookie value. Expected: {MAGIC_COOKIE}, "
                f"Received: {IPv4Address(cookie)}"
            )
        check_option_lengths(buf[OPTIONS_OFFSET:])
        dhcp.DHCP.unpack(self, buf)
        self.sname = self.sname.split(b"\x00", 1)[0]
        self.file = self.file.split(b"\x00", 1)[0]
        self.opts = OptionTable(self.opts)
        # Whatever follows the END option is not part of the message
        self.data = b""

    def pack_hdr(self) -> bytes:
        if self.opts.message_type is None:
            raise dpkt.PackError(
                f"Required option {dhcp.DHCP_OPT_MSGTYPE} "
                "(DHCP message type) is missing"
            )
        if len(self.chaddr) > CHADDR_LEN or len(self.chaddr) != self.hln:
            raise dpkt.PackError(
                f"Hardware address of {len(self.chaddr)} octets "
                f"does not match hlen {self.hln}"
            )
        for field, width in (("sname", SNAME_LEN), ("file", FILE_LEN)):
            # One octet is kept for the terminating NUL
            if len(getattr(self, field)) >= width:
                raise dpkt.PackError(
                    f"The value of {field} is too long for {width} octets"
                )
        self.magic = dhcp.DHCP_MAGIC
        return dpkt.Packet.pack_hdr(self)

    def __str__(self) -> str:
        mtype = self.opts.message_type
        value = (
            f"DHCP Message: [{mtype_to_str(mtype)}] "
            f"{self.client_mac} / {self.client_addr}"
        )
        address = self.opts.requested_address or self.your_addr
        if not address.is_unspecified:
            value += f" => {address}"
        text = self.opts.message
        if text:
            value += f" - {text}"
        return value

    @property
    def client_mac(self) -> Mac:
        # Leases are keyed by the first six octets of chaddr
        return Mac(self.chaddr[:MAC_LEN].ljust(MAC_LEN, b"\x00"))

    @client_mac.setter
    def client_mac(self, mac: Mac) -> None:
        self.chaddr = bytes(Mac(mac))
        self.hln = MAC_LEN

    @property
    def client_addr(self) -> IPv4Address:
        return IPv4Address(self.ciaddr)

    @client_addr.setter
    def client_addr(self, addr: IPv4Address) -> None:
        self.ciaddr = ipv4_to_int(addr)

    @property
    def your_addr(self) -> IPv4Address:
        return IPv4Address(self.yiaddr)

    @your_addr.setter
    def your_addr(self, addr: IPv4Address) -> None:
        self.yiaddr = ipv4_to_int(addr)

    @property
    def next_server_addr(self) -> IPv4Address:
        return IPv4Address(self.siaddr)

    @next_server_addr.setter
    def next_server_addr(self, addr: IPv4Address) -> None:
        self.siaddr = ipv4_to_int(addr)

    @property
    def relay_addr(self) -> IPv4Address:
        return IPv4Address(self.giaddr)

    @relay_addr.setter
    def relay_addr(self, addr: IPv4Address) -> None:
        self.giaddr = ipv4_to_int(addr)

    @property
    def server_name(self) -> str:
        return self.sname.decode("ascii", errors="replace")

    @server_name.setter
    def server_name(self, name: str) -> None:
        self.sname = name.encode("ascii")

    @property
    def boot_file(self) -> str:
        return self.file.decode("ascii", errors="replace")

    @boot_file.setter
    def boot_file(self, name: str) -> None:
        self.file = name.encode("ascii")

    @property
    def is_broadcast(self) -> bool:
        return bool(self.flags & BROADCAST_FLAG)
