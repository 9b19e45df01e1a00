from ipaddress import IPv4Address, IPv4Network
from socket import AF_INET
from typing import Any, Callable, List

from pyroute2 import IPRoute  # pylint: disable=no-name-in-module
from pyroute2.netlink.exceptions import NetlinkDumpInterrupted

from .logmgr import logger

IFF_LOOPBACK = 0x8  # defined in linux/if.h


def strtobool(val: str) -> bool:
    return val.lower() in ["true", "1", "yes", "on"]


def retry_interrupted(
    func: Callable[..., List[Any]], *args: Any, **kwargs: Any
) -> List[Any]:
    """
    Retry `func` with `args`, `kwargs` until NetlinkDumpInterrupted
    does not happen.  Assume that the generator returns a list!
    """
    tries = 0
    while True:
        tries += 1
        try:
            result = list(func(*args, **kwargs))
            break
        except NetlinkDumpInterrupted:
            continue
    if tries > 1:
        logger.warning(
            "%s %s %s got NetlinkDumpInterrupted, succeeded after %d tries",
            func,
            args,
            kwargs,
            tries,
        )
    return result


def prefix_length(subnet_mask: IPv4Address) -> int:
    return IPv4Network(f"0.0.0.0/{subnet_mask}").prefixlen


def interface_ready(address: IPv4Address, subnet_mask: IPv4Address) -> bool:
    """
    True if a non-loopback interface in UP state carries `address`
    with the prefix length of `subnet_mask`
    """
    prefixlen = prefix_length(subnet_mask)
    nlsock = IPRoute()
    try:
        for addr in retry_interrupted(nlsock.get_addr, family=AF_INET):
            if addr.get_attr("IFA_ADDRESS") != str(address):
                continue
            if addr["prefixlen"] != prefixlen:
                logger.debug(
                    "%s is configured with prefix length %d, expected %d",
                    address,
                    addr["prefixlen"],
                    prefixlen,
                )
                continue
            for link in retry_interrupted(nlsock.get_links, addr["index"]):
                ifname = link.get_attr("IFLA_IFNAME")
                if link["flags"] & IFF_LOOPBACK:
                    logger.debug("%s is on loopback %s", address, ifname)
                    continue
                state = link.get_attr("IFLA_OPERSTATE")
                if state == "UP":
                    return True
                logger.debug("%s is on %s in state %s", address, ifname, state)
    finally:
        nlsock.close()
    return False
