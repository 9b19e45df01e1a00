#!/usr/bin/env python3

from argparse import ArgumentParser
from ipaddress import IPv4Address
import configparser
import os
from pathlib import Path
from typing import Dict, Any, Optional

from .allocation_mgr import Allocator
from .dhcpserver import DhcpServer
from .logmgr import logger, set_log_config
from .pool_handler import PoolHandler
from .subnet_pool import load_pools
from . import allocation_mgr
from . import dhcpserver

if __name__ == "__main__":
    # Default config file path
    config_file = Path("/etc/poolhcpd/poolhcpd.conf")
    addn_config_dir: Optional[Path] = None

    argparser = ArgumentParser()
    argparser.add_argument(
        "-v",
        "--verbose",
        help="Enable verbose debug logging",
        action="store_true",
    )
    argparser.add_argument(
        "-f",
        "--foreground",
        help="Do not daemonize and log to stdout",
        action="store_true",
    )

    argparser.add_argument(
        "-c",
        "--config_file",
        type=Path,
        help="Specify the default config file",
    )

    argparser.add_argument(
        "-a",
        "--config_dir",
        type=Path,
        help="Specify the directory for additionaly config file lookup",
    )

    namespace = argparser.parse_args()
    set_log_config(namespace)

    if namespace.config_file is not None:
        config_file = namespace.config_file
    if namespace.config_dir is not None:
        addn_config_dir = namespace.config_dir

    config = configparser.ConfigParser()

    # Load default configuration
    poolhcpd_config: Dict[str, Any] = dict()
    config.read(config_file)
    poolhcpd_config.update(config["poolhcpd"])

    # Load any additional configuration, pools included
    if (
        addn_config_dir
        and os.path.isdir(addn_config_dir)
        and os.listdir(addn_config_dir)
    ):
        for conf_file in sorted(
            [el for el in os.listdir(addn_config_dir) if el.endswith(".conf")]
        ):
            config.read(os.path.join(addn_config_dir, conf_file))
            poolhcpd_config.update(config["poolhcpd"])

    allocation_mgr.init(poolhcpd_config)
    dhcpserver.init(poolhcpd_config)

    pools = load_pools(config)
    if not pools:
        raise RuntimeError(f"No [pool <id>] section found in {config_file}")

    listen_address = IPv4Address(poolhcpd_config["listen_address"])
    subnet_mask = IPv4Address(
        poolhcpd_config.get("subnet_mask", str(pools[0].subnet_mask))
    )
    gateway = poolhcpd_config.get("gateway")
    server = DhcpServer(
        listen_address,
        subnet_mask,
        PoolHandler(Allocator(pools, listen_address)),
        gateway=IPv4Address(gateway) if gateway else None,
    )

    if not server.can_start:
        logger.warning(
            "No interface in UP state carries %s/%s, binding anyway",
            listen_address,
            subnet_mask,
        )
    server.start()
    try:
        server.join()
    except KeyboardInterrupt:
        server.stop()
    logger.info("Server exiting..")
