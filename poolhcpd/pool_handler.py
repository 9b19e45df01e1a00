#!/usr/bin/env python3

from typing import Tuple, Union

from .allocation_mgr import Allocation, Allocator, V4Config
from .datatypes import DHCPError, DHCPResponse, ErrorKind
from .dhcp4 import DhcpMessage, mtype_to_str
from .dhcp_packet_mgr import (
    DhcpHandler,
    HandlerResult,
    construct_dhcp_ack,
    construct_dhcp_nak,
    construct_dhcp_offer,
)
from .logmgr import logger


def _response(msg: DhcpMessage, allocation: Allocation) -> DHCPResponse:
    pool = allocation.pool
    return DHCPResponse(
        message=msg, subnet_mask=pool.subnet_mask, gateway=pool.gateway
    )


class PoolHandler(DhcpHandler):
    """Answers clients from the subnet pools of an Allocator"""

    def __init__(self, allocator: Allocator) -> None:
        self.allocator = allocator

    def discover_received(self, msg: DhcpMessage) -> HandlerResult:
        result = self.allocator.offer_address(msg)
        if isinstance(result, DHCPError):
            return result
        offer = construct_dhcp_offer(msg, result.address, V4Config.lease_time)
        return _response(offer, result)

    def _nak(self, msg: DhcpMessage, text: str) -> DHCPResponse:
        return DHCPResponse(message=construct_dhcp_nak(msg, text))

    def request_received(self, msg: DhcpMessage) -> HandlerResult:
        result: Union[DHCPError, Allocation]
        result = self.allocator.assigned_address(msg)
        if isinstance(result, DHCPError):
            if (
                result.kind is ErrorKind.NO_LEASE
                and V4Config.nak_unassigned_requests
            ):
                return self._nak(msg, "No address assigned to the client")
            return result

        requested = msg.opts.requested_address
        if requested is None and not msg.client_addr.is_unspecified:
            requested = msg.client_addr
        if requested is not None and requested != result.address:
            logger.debug(
                "%s requested %s but is assigned %s",
                msg.client_mac,
                requested,
                result.address,
            )
            if V4Config.nak_unassigned_requests:
                return self._nak(msg, f"Address {requested} not assigned")

        ack = construct_dhcp_ack(msg, result.address, V4Config.lease_time)
        return _response(ack, result)

    def decline_received(self, msg: DhcpMessage) -> None:
        logger.warning(
            "Client %s declined %s", msg.client_mac, msg.opts.requested_address
        )

    def release_received(self, msg: DhcpMessage) -> None:
        if not V4Config.release_frees_lease:
            logger.info("Client %s sent release, lease kept", msg.client_mac)
            return
        addr = self.allocator.release(msg)
        logger.info("Client %s released %s", msg.client_mac, addr)

    def inform_received(self, msg: DhcpMessage) -> None:
        logger.info(
            "Client %s sent inform from %s", msg.client_mac, msg.client_addr
        )

    def response_sent(
        self, response: DHCPResponse, daddr: Tuple[str, int]
    ) -> None:
        reply = response.message
        logger.debug(
            "Sent %s to %s:%d for %s",
            mtype_to_str(reply.opts.message_type),
            daddr[0],
            daddr[1],
            reply.client_mac,
        )

    def socket_error(self, err: OSError) -> None:
        logger.error("Socket error: %s", err)

    def message_error(self, err: DHCPError) -> None:
        logger.error(
            "Dropped message from %s (%s): %s",
            err.client,
            err.kind.name,
            err.error,
        )
