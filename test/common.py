from contextlib import contextmanager
from ipaddress import IPv4Address
from random import Random
import socket

from dpkt import dhcp

from poolhcpd.allocation_mgr import Allocator
from poolhcpd.datatypes import Mac
from poolhcpd.dhcp4 import DhcpMessage
from poolhcpd.dhcpserver import DhcpServer
from poolhcpd.options import DHCP_OPT_RELAY_AGENT_INFO, RelayAgentInfo
from poolhcpd.pool_handler import PoolHandler
from poolhcpd.subnet_pool import SubnetPool

CLIENT_MAC = "12:34:56:78:90:12"
RESERVED_MAC = "20:87:56:1b:89:20"
SERVER_ADDR = IPv4Address("192.168.0.3")


def build_pools():
    """The two pools of the sample configuration"""
    return [
        SubnetPool(
            1,
            IPv4Address("192.168.0.190"),
            IPv4Address("192.168.0.199"),
            IPv4Address("255.255.255.0"),
            IPv4Address("192.168.0.0"),
            circuit_ids=["Vlan1"],
        ),
        SubnetPool(
            2,
            IPv4Address("192.168.2.150"),
            IPv4Address("192.168.2.160"),
            IPv4Address("255.255.255.0"),
            IPv4Address("192.168.2.0"),
            reservations={
                Mac(RESERVED_MAC): IPv4Address("192.168.2.156"),
            },
            circuit_ids=["Vlan2"],
            remote_ids=["d4-f5-27-63-b8-b3", "Vlan2"],
        ),
    ]


def build_allocator(server_addr=SERVER_ADDR, seed=4):
    return Allocator(build_pools(), server_addr, rng=Random(seed))


def build_request(
    mtype,
    mac=CLIENT_MAC,
    xid=0x3903F326,
    giaddr=None,
    ciaddr=None,
    requested=None,
    server_id=None,
    circuit_id=None,
    remote_id=None,
    flags=0,
):
    msg = DhcpMessage(op=dhcp.DHCP_OP_REQUEST, xid=xid, flags=flags)
    msg.client_mac = Mac(mac)
    if giaddr is not None:
        msg.relay_addr = IPv4Address(giaddr)
    if ciaddr is not None:
        msg.client_addr = IPv4Address(ciaddr)
    msg.opts.message_type = mtype
    if requested is not None:
        msg.opts.requested_address = IPv4Address(requested)
    if server_id is not None:
        msg.opts.server_identifier = IPv4Address(server_id)
    if circuit_id is not None or remote_id is not None:
        info = RelayAgentInfo(circuit_id=circuit_id, remote_id=remote_id)
        msg.opts.set_raw(DHCP_OPT_RELAY_AGENT_INFO, bytes(info))
    return msg


def on_the_wire(msg):
    """Encode and decode again, as a datagram would travel"""
    return DhcpMessage(bytes(msg))


@contextmanager
def running_server(handler, **kwargs):
    """
    A server on an ephemeral loopback port, with a client socket
    bound to the port replies are sent to
    """
    client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    client.bind(("127.0.0.1", 0))
    client.settimeout(5)
    server = DhcpServer(
        IPv4Address("127.0.0.1"),
        IPv4Address("255.0.0.0"),
        handler,
        port=0,
        client_port=client.getsockname()[1],
        poll_interval=100,
        **kwargs,
    )
    server.start()
    try:
        yield server, client
    finally:
        server.stop()
        server.join(5)
        client.close()


def pool_server(**kwargs):
    return running_server(PoolHandler(build_allocator()), **kwargs)
