#!/usr/bin/env python3

from configparser import ConfigParser, SectionProxy
from ipaddress import IPv4Address
from random import Random
from threading import Lock
from typing import Dict, Iterable, Iterator, List, Optional

from .datatypes import Mac
from .logmgr import logger

POOL_SECTION_PREFIX = "pool "


class SubnetPool:
    # pylint: disable=too-many-instance-attributes
    """
    One allocatable IPv4 range.

    Static reservations come from configuration and are read only at
    runtime. Dynamic leases hold at most one address per MAC; the lease
    maps are only changed under `lock`.
    """

    def __init__(
        self,
        pool_id: int,
        start: IPv4Address,
        end: IPv4Address,
        subnet_mask: IPv4Address,
        network: IPv4Address,
        gateway: Optional[IPv4Address] = None,
        reservations: Optional[Dict[Mac, IPv4Address]] = None,
        circuit_ids: Iterable[str] = (),
        remote_ids: Iterable[str] = (),
    ) -> None:
        for addr in (start, end, subnet_mask, network, gateway):
            if addr is not None and not isinstance(addr, IPv4Address):
                raise ValueError(
                    f"Only IPv4 addresses are supported, got {addr!r}"
                )
        if start > end:
            raise ValueError(f"Pool {pool_id}: {start} is above {end}")
        self.pool_id = pool_id
        self.start = start
        self.end = end
        self.subnet_mask = subnet_mask
        self.network = network
        self.gateway = gateway
        self.reservations: Dict[Mac, IPv4Address] = dict(reservations or {})
        self.circuit_ids = list(circuit_ids)
        self.remote_ids = list(remote_ids)
        self.lock = Lock()
        self._leases: Dict[Mac, IPv4Address] = {}
        self._holders: Dict[IPv4Address, Mac] = {}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.pool_id}, {self.start}-{self.end}"
            f" {self.network}/{self.subnet_mask})"
        )

    def in_subnet(self, addr: IPv4Address) -> bool:
        mask = int(self.subnet_mask)
        return int(addr) & mask == int(self.network) & mask

    def in_range(self, addr: IPv4Address) -> bool:
        return self.start <= addr <= self.end

    def addresses(self) -> Iterator[IPv4Address]:
        for val in range(int(self.start), int(self.end) + 1):
            yield IPv4Address(val)

    def random_address(self, rng: Random) -> IPv4Address:
        return IPv4Address(rng.randint(int(self.start), int(self.end)))

    def is_reserved(self, addr: IPv4Address) -> bool:
        return addr in self.reservations.values()

    def reservation_for(self, mac: Mac) -> Optional[IPv4Address]:
        return self.reservations.get(mac)

    def lease_for(self, mac: Mac) -> Optional[IPv4Address]:
        with self.lock:
            return self._leases.get(mac)

    def leases(self) -> Dict[Mac, IPv4Address]:
        with self.lock:
            return dict(self._leases)

    def claim(self, mac: Mac, addr: IPv4Address) -> bool:
        """
        Record `addr` as the dynamic lease of `mac`.
        Fails without side effects if the address is outside the range,
        statically reserved or leased to another client.
        """
        with self.lock:
            holder = self._holders.get(addr)
            if holder is not None and holder != mac:
                return False
            if not self.in_range(addr) or self.is_reserved(addr):
                return False
            previous = self._leases.get(mac)
            if previous is not None:
                del self._holders[previous]
            self._leases[mac] = addr
            self._holders[addr] = mac
        logger.debug("Pool %d: leased %s to %s", self.pool_id, addr, mac)
        return True

    def release(self, mac: Mac) -> Optional[IPv4Address]:
        with self.lock:
            addr = self._leases.pop(mac, None)
            if addr is not None:
                del self._holders[addr]
        if addr is not None:
            logger.debug(
                "Pool %d: released %s from %s", self.pool_id, addr, mac
            )
        return addr


def _split_list(val: str) -> List[str]:
    items = val.replace("\n", ",").split(",")
    return [el.strip() for el in items if el.strip()]


def parse_reservations(val: str) -> Dict[Mac, IPv4Address]:
    """Parse `MAC ADDRESS` pairs, one per line or comma separated"""
    reservations: Dict[Mac, IPv4Address] = {}
    for entry in _split_list(val):
        try:
            mac, addr = entry.split()
            reservations[Mac(mac)] = IPv4Address(addr)
        except ValueError as err:
            raise ValueError(
                f"{err}: Invalid reservation entry {entry}"
            ) from err
    return reservations


def pool_from_section(pool_id: int, section: SectionProxy) -> SubnetPool:
    subnet_mask = IPv4Address(section.get("subnet_mask", "255.255.255.0"))
    start = IPv4Address(section["start"])
    network = IPv4Address(
        section.get("network", str(IPv4Address(int(start) & int(subnet_mask))))
    )
    gateway = section.get("gateway")
    return SubnetPool(
        pool_id,
        start,
        IPv4Address(section["end"]),
        subnet_mask,
        network,
        gateway=IPv4Address(gateway) if gateway else None,
        reservations=parse_reservations(section.get("reservations", "")),
        circuit_ids=_split_list(section.get("circuit_ids", "")),
        remote_ids=_split_list(section.get("remote_ids", "")),
    )


def load_pools(parser: ConfigParser) -> List[SubnetPool]:
    """Build pools from the `[pool <id>]` sections, in file order"""
    pools = []
    for name in parser.sections():
        if not name.startswith(POOL_SECTION_PREFIX):
            continue
        try:
            pool_id = int(name[len(POOL_SECTION_PREFIX) :])
        except ValueError as err:
            raise ValueError(f"{err}: Invalid pool section [{name}]") from err
        pool = pool_from_section(pool_id, parser[name])
        logger.debug("Loaded %s", pool)
        pools.append(pool)
    if len({pool.pool_id for pool in pools}) != len(pools):
        raise ValueError("Pool identifiers must be unique")
    return pools
