#!/usr/bin/env python3

from dataclasses import dataclass
from ipaddress import IPv4Address
from random import Random
from typing import Any, Dict, List, Optional, Sequence, Union

from .datatypes import DHCPError, ErrorKind, Mac
from .dhcp4 import DhcpMessage
from .logmgr import logger
from .subnet_pool import SubnetPool
from .utils import strtobool


class V4Config:
    lease_time: int = 60
    max_alloc_attempts: int = 256
    release_frees_lease: bool = False
    nak_unassigned_requests: bool = False

    @classmethod
    def init(
        cls,
        lease_time: int,
        max_alloc_attempts: int,
        release_frees_lease: bool,
        nak_unassigned_requests: bool,
    ) -> None:
        cls.lease_time = lease_time
        cls.max_alloc_attempts = max_alloc_attempts
        cls.release_frees_lease = release_frees_lease
        cls.nak_unassigned_requests = nak_unassigned_requests


def init(config: Dict[str, Any]) -> None:
    V4Config.init(
        int(config.get("lease_time", 60)),
        int(config.get("max_alloc_attempts", 256)),
        strtobool(config.get("release_frees_lease", "False")),
        strtobool(config.get("nak_unassigned_requests", "False")),
    )


@dataclass
class Allocation:
    address: IPv4Address
    pool: SubnetPool


AllocationResult = Union[DHCPError, Allocation]


class Allocator:
    """
    Maps a client request to a pool and an address in it.

    With relay agent information present the pool is chosen by the
    remote id first, then by the circuit id, and an unknown id is not
    served. Without it the pool is the one whose subnet contains the
    relay address, or the server's own address for local clients.
    """

    def __init__(
        self,
        pools: Sequence[SubnetPool],
        server_addr: IPv4Address,
        rng: Optional[Random] = None,
    ) -> None:
        self.pools: Dict[int, SubnetPool] = {}
        self.circuit_map: Dict[str, int] = {}
        self.remote_map: Dict[str, int] = {}
        for pool in pools:
            if pool.pool_id in self.pools:
                raise ValueError(f"Duplicate pool identifier {pool.pool_id}")
            self.pools[pool.pool_id] = pool
            for circuit_id in pool.circuit_ids:
                self.circuit_map[circuit_id] = pool.pool_id
            for remote_id in pool.remote_ids:
                self.remote_map[remote_id] = pool.pool_id
        self.server_addr = server_addr
        self.rng = rng or Random()

    def select_pool(self, msg: DhcpMessage) -> Union[DHCPError, SubnetPool]:
        info = msg.opts.relay_agent_info
        if info is not None:
            pool_id: Optional[int] = None
            if info.remote_id is not None:
                pool_id = self.remote_map.get(info.remote_id)
            if pool_id is None and info.circuit_id is not None:
                pool_id = self.circuit_map.get(info.circuit_id)
            if pool_id is None:
                return DHCPError(
                    f"No pool mapped to remote id {info.remote_id} "
                    f"or circuit id {info.circuit_id}",
                    ErrorKind.NO_SUBNET,
                    msg.client_mac,
                )
            return self.pools[pool_id]

        addr = msg.relay_addr
        if addr.is_unspecified:
            addr = self.server_addr
        for pool in self.pools.values():
            if pool.in_subnet(addr):
                return pool
        return DHCPError(
            f"No pool serves the subnet of {addr}",
            ErrorKind.NO_SUBNET,
            msg.client_mac,
        )

    def _known_address(
        self, pool: SubnetPool, mac: Mac
    ) -> Optional[IPv4Address]:
        addr = pool.reservation_for(mac)
        if addr is not None:
            logger.debug("%s has reservation %s", mac, addr)
            return addr
        addr = pool.lease_for(mac)
        if addr is not None:
            logger.debug("%s holds lease %s", mac, addr)
        return addr

    def _allocate(self, pool: SubnetPool, mac: Mac) -> AllocationResult:
        for _ in range(V4Config.max_alloc_attempts):
            addr = pool.random_address(self.rng)
            if pool.claim(mac, addr):
                return Allocation(addr, pool)
        # Random draws keep colliding on a nearly full pool
        for addr in pool.addresses():
            if pool.claim(mac, addr):
                return Allocation(addr, pool)
        return DHCPError(
            f"No free address left in pool {pool.pool_id}",
            ErrorKind.POOL_EXHAUSTED,
            mac,
        )

    def offer_address(self, msg: DhcpMessage) -> AllocationResult:
        pool = self.select_pool(msg)
        if isinstance(pool, DHCPError):
            return pool
        mac = msg.client_mac
        addr = self._known_address(pool, mac)
        if addr is not None:
            return Allocation(addr, pool)
        return self._allocate(pool, mac)

    def assigned_address(self, msg: DhcpMessage) -> AllocationResult:
        pool = self.select_pool(msg)
        if isinstance(pool, DHCPError):
            return pool
        mac = msg.client_mac
        addr = self._known_address(pool, mac)
        if addr is None:
            return DHCPError(
                f"No reservation or lease in pool {pool.pool_id}",
                ErrorKind.NO_LEASE,
                mac,
            )
        return Allocation(addr, pool)

    def release(self, msg: DhcpMessage) -> Optional[IPv4Address]:
        pool = self.select_pool(msg)
        if isinstance(pool, DHCPError):
            logger.debug("Nothing to release: %s", pool.error)
            return None
        return pool.release(msg.client_mac)

    def leases(self) -> List[Allocation]:
        return [
            Allocation(addr, pool)
            for pool in self.pools.values()
            for addr in pool.leases().values()
        ]
