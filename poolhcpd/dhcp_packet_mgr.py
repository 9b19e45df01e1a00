#!/usr/bin/env python3

from abc import ABC, abstractmethod
from ipaddress import IPv4Address
from typing import Callable, Dict, Optional, Tuple, Union

from dpkt import dhcp

from .datatypes import DHCPError, DHCPResponse, DhcpMessageError, ErrorKind
from .dhcp4 import DhcpMessage, mtype_to_str
from .logmgr import logger

HandlerResult = Union[DHCPError, DHCPResponse, None]


class DhcpHandler(ABC):
    """
    Policy hooks of the server.

    `discover_received` and `request_received` return the reply to send,
    a DHCPError to report, or None to stay silent. The remaining
    message hooks are notifications only.
    """

    @abstractmethod
    def discover_received(self, msg: DhcpMessage) -> HandlerResult: ...

    @abstractmethod
    def request_received(self, msg: DhcpMessage) -> HandlerResult: ...

    @abstractmethod
    def decline_received(self, msg: DhcpMessage) -> None: ...

    @abstractmethod
    def release_received(self, msg: DhcpMessage) -> None: ...

    @abstractmethod
    def inform_received(self, msg: DhcpMessage) -> None: ...

    @abstractmethod
    def response_sent(
        self, response: DHCPResponse, daddr: Tuple[str, int]
    ) -> None: ...

    @abstractmethod
    def socket_error(self, err: OSError) -> None: ...

    @abstractmethod
    def message_error(self, err: DHCPError) -> None: ...


def _check_type(request: DhcpMessage, expected: int, reply: int) -> None:
    mtype = request.opts.message_type
    if mtype != expected:
        raise DhcpMessageError(
            f"Cannot build {mtype_to_str(reply)} from "
            f"{mtype_to_str(mtype)}",
            request,
        )


def construct_dhcp_reply(request: DhcpMessage, mtype: int) -> DhcpMessage:
    reply = DhcpMessage(
        op=dhcp.DHCP_OP_REPLY,
        hrd=request.hrd,
        hln=request.hln,
        xid=request.xid,
        flags=request.flags,
        giaddr=request.giaddr,
        chaddr=request.chaddr,
    )
    reply.opts.message_type = mtype
    return reply


def construct_dhcp_offer(
    request: DhcpMessage, offer_ip: IPv4Address, lease_time: int
) -> DhcpMessage:
    _check_type(request, dhcp.DHCPDISCOVER, dhcp.DHCPOFFER)
    reply = construct_dhcp_reply(request, dhcp.DHCPOFFER)
    reply.your_addr = offer_ip
    reply.opts.lease_time = lease_time
    logger.info(
        "Client: %s DHCP Offer for IP %s", request.client_mac, offer_ip
    )
    return reply


def construct_dhcp_ack(
    request: DhcpMessage, client_ip: IPv4Address, lease_time: int
) -> DhcpMessage:
    _check_type(request, dhcp.DHCPREQUEST, dhcp.DHCPACK)
    reply = construct_dhcp_reply(request, dhcp.DHCPACK)
    reply.ciaddr = request.ciaddr
    reply.your_addr = client_ip
    reply.opts.lease_time = lease_time
    logger.info("Client: %s DHCP ACK for IP %s", request.client_mac, client_ip)
    return reply


def construct_dhcp_nak(request: DhcpMessage, text: str) -> DhcpMessage:
    _check_type(request, dhcp.DHCPREQUEST, dhcp.DHCPNAK)
    reply = construct_dhcp_reply(request, dhcp.DHCPNAK)
    reply.opts.message = text
    logger.info("Client: %s DHCP NAK: %s", request.client_mac, text)
    return reply


def process_dhcp_discover(
    msg: DhcpMessage, server_id: IPv4Address, handler: DhcpHandler
) -> HandlerResult:
    return handler.discover_received(msg)


def process_dhcp_request(
    msg: DhcpMessage, server_id: IPv4Address, handler: DhcpHandler
) -> HandlerResult:
    requested_server = msg.opts.server_identifier
    if requested_server is not None and requested_server != server_id:
        # The client selected another server's offer
        logger.debug(
            "Ignoring DHCPREQUEST from %s for server %s",
            msg.client_mac,
            requested_server,
        )
        return None
    return handler.request_received(msg)


def process_dhcp_decline(
    msg: DhcpMessage, server_id: IPv4Address, handler: DhcpHandler
) -> HandlerResult:
    handler.decline_received(msg)
    return None


def process_dhcp_release(
    msg: DhcpMessage, server_id: IPv4Address, handler: DhcpHandler
) -> HandlerResult:
    handler.release_received(msg)
    return None


def process_dhcp_inform(
    msg: DhcpMessage, server_id: IPv4Address, handler: DhcpHandler
) -> HandlerResult:
    handler.inform_received(msg)
    return None


dhcp_packet_handlers: Dict[
    int,
    Callable[[DhcpMessage, IPv4Address, DhcpHandler], HandlerResult],
] = {
    dhcp.DHCPDISCOVER: process_dhcp_discover,
    dhcp.DHCPREQUEST: process_dhcp_request,
    dhcp.DHCPDECLINE: process_dhcp_decline,
    dhcp.DHCPRELEASE: process_dhcp_release,
    dhcp.DHCPINFORM: process_dhcp_inform,
}


def process_dhcp_packet(
    msg: DhcpMessage, server_id: IPv4Address, handler: DhcpHandler
) -> HandlerResult:
    if msg.op != dhcp.DHCP_OP_REQUEST:
        return DHCPError(
            error=f"Unexpected opcode {msg.op}",
            kind=ErrorKind.PROTOCOL,
            client=msg.client_mac,
        )

    dhcp_type: Optional[int] = msg.opts.message_type
    logger.debug("Received %s", msg)

    if dhcp_type is None or dhcp_type not in dhcp_packet_handlers:
        return DHCPError(
            error=f"Unsupported DHCP type {dhcp_type}",
            kind=ErrorKind.PROTOCOL,
            client=msg.client_mac,
        )
    return dhcp_packet_handlers[dhcp_type](msg, server_id, handler)
