#!/usr/bin/env python3

"""
This module binds the DHCP server port, decodes every received
datagram and hands the replies produced by the packet manager to
a pool of sender threads
"""

from concurrent.futures import ThreadPoolExecutor
from ipaddress import IPv4Address
from select import poll, POLLIN
from threading import Lock, Thread
from typing import Any, Dict, Optional, Tuple
import socket

import dpkt
from dpkt import dhcp

from .datatypes import DHCPError, DHCPResponse, DhcpMessageError, ErrorKind
from .dhcp4 import DhcpMessage, mtype_to_str
from .dhcp_packet_mgr import DhcpHandler, process_dhcp_packet
from .logmgr import logger
from .utils import interface_ready

SERVER_PORT = 67
CLIENT_PORT = 68
BROADCAST = "255.255.255.255"
RECV_BUFSIZE = 4096


class ServerConfig:
    send_workers = 4
    poll_interval = 1000

    @classmethod
    def init(cls, send_workers: int, poll_interval: int) -> None:
        cls.send_workers = send_workers
        cls.poll_interval = poll_interval


def init(config: Dict[str, Any]) -> None:
    send_workers = int(config.get("send_workers", 4))
    if send_workers < 1:
        raise RuntimeError(
            f"Invalid configuration: send_workers={send_workers}"
        )
    ServerConfig.init(send_workers, int(config.get("poll_interval", 1000)))


def finish_response(
    response: DHCPResponse,
    server_id: IPv4Address,
    subnet_mask: IPv4Address,
    gateway: Optional[IPv4Address] = None,
) -> DhcpMessage:
    """
    Stamp the network parameters and the server identifier on a reply.
    The responding pool's mask and gateway take precedence over the
    server's own; a relayed reply without either uses the relay address.
    """
    reply = response.message
    mtype = reply.opts.message_type
    if mtype in (dhcp.DHCPOFFER, dhcp.DHCPACK):
        reply.opts.set_address(
            dhcp.DHCP_OPT_NETMASK, response.subnet_mask or subnet_mask
        )
        router = response.gateway or gateway
        if router is None and not reply.relay_addr.is_unspecified:
            router = reply.relay_addr
        if router is not None:
            reply.opts.set_address(dhcp.DHCP_OPT_ROUTER, router)
    elif mtype != dhcp.DHCPNAK:
        raise DhcpMessageError(
            f"Refusing to send {mtype_to_str(mtype)} as a server reply", reply
        )
    reply.opts.server_identifier = server_id
    return reply


def fetch_destination_address(
    msg: DhcpMessage, remote: Tuple[str, int], client_port: int = CLIENT_PORT
) -> Tuple[str, int]:
    if not msg.relay_addr.is_unspecified:
        # Back to the endpoint of the relay agent
        return remote
    if not msg.client_addr.is_unspecified:
        return (str(msg.client_addr), client_port)
    return (BROADCAST, client_port)


class DhcpServer:
    # pylint: disable=too-many-instance-attributes
    """
    UDP front end of the server.

    Datagrams are received and processed one at a time on a dedicated
    thread; replies are sent from a thread pool and may leave in any
    order.
    """

    def __init__(
        self,
        listen_address: IPv4Address,
        subnet_mask: IPv4Address,
        handler: DhcpHandler,
        gateway: Optional[IPv4Address] = None,
        port: int = SERVER_PORT,
        client_port: int = CLIENT_PORT,
        send_workers: Optional[int] = None,
        poll_interval: Optional[int] = None,
    ) -> None:
        for addr in (listen_address, subnet_mask, gateway):
            if addr is not None and not isinstance(addr, IPv4Address):
                raise ValueError(
                    f"Only IPv4 addresses are supported, got {addr!r}"
                )
        self.listen_address = listen_address
        self.subnet_mask = subnet_mask
        self.gateway = gateway
        self.handler = handler
        self.port = port
        self.client_port = client_port
        self.send_workers = send_workers or ServerConfig.send_workers
        self.poll_interval = poll_interval or ServerConfig.poll_interval
        self._control_lock = Lock()
        self._sock: Optional[socket.socket] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._thread: Optional[Thread] = None

    @property
    def is_running(self) -> bool:
        return self._sock is not None

    @property
    def server_address(self) -> Optional[Tuple[str, int]]:
        sock = self._sock
        if sock is None:
            return None
        addr: Tuple[str, int] = sock.getsockname()
        return addr

    @property
    def can_start(self) -> bool:
        return interface_ready(self.listen_address, self.subnet_mask)

    def start(self) -> None:
        with self._control_lock:
            if self._sock is not None:
                return
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                sock.bind((str(self.listen_address), self.port))
            except OSError as err:
                logger.error(
                    "Error %s binding to %s:%d",
                    err,
                    self.listen_address,
                    self.port,
                )
                sock.close()
                raise
            executor = ThreadPoolExecutor(
                max_workers=self.send_workers, thread_name_prefix="dhcp-send"
            )
            self._sock = sock
            self._executor = executor
            self._thread = Thread(
                target=self._receive_loop,
                args=(sock, executor),
                name="dhcp-recv",
                daemon=True,
            )
            self._thread.start()
            logger.info("Serving on %s:%d", *sock.getsockname())

    def stop(self) -> None:
        with self._control_lock:
            sock, self._sock = self._sock, None
            executor, self._executor = self._executor, None
        if sock is None:
            return
        # Wakes up the receive loop, which then finds itself stopped
        sock.close()
        if executor is not None:
            executor.shutdown(wait=False)
        logger.info("Server stopped")

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _receive_loop(
        self, sock: socket.socket, executor: ThreadPoolExecutor
    ) -> None:
        poller = poll()
        poller.register(sock, POLLIN)
        while self._sock is sock:
            if not poller.poll(self.poll_interval):
                continue
            try:
                buf, remote = sock.recvfrom(RECV_BUFSIZE)
            except OSError as err:
                if self._sock is not sock:
                    break
                logger.error("Error %s receiving on %s", err, sock)
                self.stop()
                self.handler.socket_error(err)
                break
            self._process_datagram(buf, remote, sock, executor)
        logger.debug("Receive loop exiting")

    def _process_datagram(
        self,
        buf: bytes,
        remote: Tuple[str, int],
        sock: socket.socket,
        executor: ThreadPoolExecutor,
    ) -> None:
        try:
            msg = DhcpMessage(buf)
        except dpkt.UnpackError as err:
            self.handler.message_error(
                DHCPError(
                    error=f"Invalid DHCP packet from {remote[0]}: {err}",
                    kind=ErrorKind.DECODE,
                    client=None,
                )
            )
            return

        try:
            result = process_dhcp_packet(
                msg, self.listen_address, self.handler
            )
        except DhcpMessageError as err:
            logger.error("Error %s processing %s", err, msg)
            return
        if result is None:
            return
        if isinstance(result, DHCPError):
            self.handler.message_error(result)
            return

        daddr = fetch_destination_address(
            result.message, remote, self.client_port
        )
        try:
            executor.submit(self._send_response, sock, result, daddr)
        except RuntimeError:
            # The executor is shut down once the server stops
            logger.debug("Server stopped, dropping reply to %s", daddr[0])

    def _send_response(
        self,
        sock: socket.socket,
        response: DHCPResponse,
        daddr: Tuple[str, int],
    ) -> None:
        try:
            reply = finish_response(
                response, self.listen_address, self.subnet_mask, self.gateway
            )
            data = bytes(reply)
        except (DhcpMessageError, dpkt.PackError, ValueError) as err:
            logger.error("Dropping reply to %s: %s", daddr[0], err)
            return
        try:
            sock.sendto(data, daddr)
        except OSError as err:
            if self._sock is not sock:
                logger.debug("Server stopped, reply to %s lost", daddr[0])
                return
            self.handler.socket_error(err)
            return
        self.handler.response_sent(response, daddr)
