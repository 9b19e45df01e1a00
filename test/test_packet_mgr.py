import unittest
from ipaddress import IPv4Address

from dpkt import dhcp

from poolhcpd import allocation_mgr
from poolhcpd.datatypes import (
    DHCPError,
    DHCPResponse,
    DhcpMessageError,
    ErrorKind,
    Mac,
)
from poolhcpd.dhcp_packet_mgr import (
    DhcpHandler,
    construct_dhcp_ack,
    construct_dhcp_nak,
    construct_dhcp_offer,
    process_dhcp_packet,
)
from poolhcpd.pool_handler import PoolHandler

from test.common import (
    CLIENT_MAC,
    SERVER_ADDR,
    build_allocator,
    build_request,
    on_the_wire,
)


class RecordingHandler(DhcpHandler):
    def __init__(self):
        self.calls = []

    def discover_received(self, msg):
        self.calls.append(("discover", msg))
        return DHCPResponse(construct_dhcp_offer(msg, SERVER_ADDR, 60))

    def request_received(self, msg):
        self.calls.append(("request", msg))
        return None

    def decline_received(self, msg):
        self.calls.append(("decline", msg))

    def release_received(self, msg):
        self.calls.append(("release", msg))

    def inform_received(self, msg):
        self.calls.append(("inform", msg))

    def response_sent(self, response, daddr):
        self.calls.append(("sent", response, daddr))

    def socket_error(self, err):
        self.calls.append(("socket_error", err))

    def message_error(self, err):
        self.calls.append(("message_error", err))


class TestDispatch(unittest.TestCase):
    def setUp(self):
        self.handler = RecordingHandler()

    def process(self, msg):
        return process_dhcp_packet(msg, SERVER_ADDR, self.handler)

    def test_discover(self):
        msg = build_request(dhcp.DHCPDISCOVER)
        result = self.process(msg)
        self.assertIsInstance(result, DHCPResponse)
        self.assertEqual(self.handler.calls, [("discover", msg)])

    def test_notifications(self):
        for mtype, hook in (
            (dhcp.DHCPDECLINE, "decline"),
            (dhcp.DHCPRELEASE, "release"),
            (dhcp.DHCPINFORM, "inform"),
        ):
            with self.subTest(hook=hook):
                msg = build_request(mtype)
                self.assertIsNone(self.process(msg))
                self.assertEqual(self.handler.calls[-1], (hook, msg))

    def test_request_for_this_server(self):
        for server_id in (None, str(SERVER_ADDR)):
            msg = build_request(dhcp.DHCPREQUEST, server_id=server_id)
            self.process(msg)
            self.assertEqual(self.handler.calls[-1], ("request", msg))

    def test_request_for_another_server_is_ignored(self):
        msg = build_request(dhcp.DHCPREQUEST, server_id="192.168.0.4")
        self.assertIsNone(self.process(msg))
        self.assertEqual(self.handler.calls, [])

    def test_reply_opcode(self):
        msg = build_request(dhcp.DHCPDISCOVER)
        msg.op = dhcp.DHCP_OP_REPLY
        result = self.process(msg)
        self.assertIsInstance(result, DHCPError)
        self.assertIs(result.kind, ErrorKind.PROTOCOL)
        self.assertEqual(self.handler.calls, [])

    def test_unsupported_types(self):
        for mtype in (dhcp.DHCPOFFER, dhcp.DHCPACK, dhcp.DHCPNAK, 42):
            with self.subTest(mtype=mtype):
                result = self.process(build_request(mtype))
                self.assertIsInstance(result, DHCPError)
                self.assertIs(result.kind, ErrorKind.PROTOCOL)
        msg = build_request(dhcp.DHCPDISCOVER)
        msg.opts.remove(dhcp.DHCP_OPT_MSGTYPE)
        self.assertIs(self.process(msg).kind, ErrorKind.PROTOCOL)
        self.assertEqual(self.handler.calls, [])


class TestReplyBuilders(unittest.TestCase):
    def test_offer(self):
        request = build_request(
            dhcp.DHCPDISCOVER, giaddr="192.168.0.1", flags=0x8000
        )
        offer = construct_dhcp_offer(request, IPv4Address("192.168.0.195"), 60)
        self.assertEqual(offer.op, dhcp.DHCP_OP_REPLY)
        self.assertEqual(offer.opts.message_type, dhcp.DHCPOFFER)
        for field in ("hrd", "hln", "xid", "flags", "giaddr", "chaddr"):
            self.assertEqual(getattr(offer, field), getattr(request, field))
        self.assertEqual(offer.your_addr, IPv4Address("192.168.0.195"))
        self.assertEqual(offer.opts.lease_time, 60)

    def test_ack_copies_client_address(self):
        request = build_request(dhcp.DHCPREQUEST, ciaddr="192.168.0.195")
        ack = construct_dhcp_ack(request, IPv4Address("192.168.0.195"), 60)
        self.assertEqual(ack.opts.message_type, dhcp.DHCPACK)
        self.assertEqual(ack.client_addr, IPv4Address("192.168.0.195"))
        self.assertEqual(ack.xid, request.xid)
        self.assertEqual(ack.client_mac, Mac(CLIENT_MAC))

    def test_nak(self):
        request = build_request(dhcp.DHCPREQUEST)
        nak = construct_dhcp_nak(request, "No lease")
        self.assertEqual(nak.opts.message_type, dhcp.DHCPNAK)
        self.assertEqual(nak.opts.message, "No lease")
        self.assertTrue(nak.your_addr.is_unspecified)

    def test_wrong_request_type(self):
        discover = build_request(dhcp.DHCPDISCOVER)
        request = build_request(dhcp.DHCPREQUEST)
        addr = IPv4Address("192.168.0.195")
        with self.assertRaises(DhcpMessageError):
            construct_dhcp_offer(request, addr, 60)
        with self.assertRaises(DhcpMessageError):
            construct_dhcp_ack(discover, addr, 60)
        with self.assertRaises(DhcpMessageError):
            construct_dhcp_nak(discover, "No lease")


class TestPoolHandler(unittest.TestCase):
    def setUp(self):
        self.handler = PoolHandler(build_allocator())

    def tearDown(self):
        allocation_mgr.init({})

    def process(self, msg):
        # Both directions go through the codec
        result = process_dhcp_packet(
            on_the_wire(msg), SERVER_ADDR, self.handler
        )
        if isinstance(result, DHCPResponse):
            result.message = on_the_wire(result.message)
        return result

    def test_discover_request(self):
        offer = self.process(build_request(dhcp.DHCPDISCOVER)).message
        self.assertEqual(offer.opts.message_type, dhcp.DHCPOFFER)
        self.assertEqual(offer.opts.lease_time, 60)
        self.assertEqual(offer.client_mac, Mac(CLIENT_MAC))
        self.assertTrue(
            IPv4Address("192.168.0.190")
            <= offer.your_addr
            <= IPv4Address("192.168.0.199")
        )

        response = self.process(
            build_request(
                dhcp.DHCPREQUEST,
                requested=str(offer.your_addr),
                server_id=str(SERVER_ADDR),
            )
        )
        ack = response.message
        self.assertEqual(ack.opts.message_type, dhcp.DHCPACK)
        self.assertEqual(ack.your_addr, offer.your_addr)
        self.assertEqual(ack.opts.lease_time, 60)
        self.assertEqual(response.subnet_mask, IPv4Address("255.255.255.0"))
        self.assertIsNone(response.gateway)

    def test_relayed_reserved_client(self):
        response = self.process(
            build_request(
                dhcp.DHCPDISCOVER,
                mac="20-87-56-1B-89-20",
                giaddr="192.168.2.1",
                remote_id="Vlan2",
            )
        )
        self.assertEqual(
            response.message.your_addr, IPv4Address("192.168.2.156")
        )
        self.assertEqual(
            response.message.relay_addr, IPv4Address("192.168.2.1")
        )

    def test_request_without_lease(self):
        result = self.process(build_request(dhcp.DHCPREQUEST))
        self.assertIsInstance(result, DHCPError)
        self.assertIs(result.kind, ErrorKind.NO_LEASE)

    def test_request_without_lease_nak(self):
        allocation_mgr.init({"nak_unassigned_requests": "True"})
        result = self.process(build_request(dhcp.DHCPREQUEST))
        self.assertEqual(result.message.opts.message_type, dhcp.DHCPNAK)

    def test_request_for_other_address(self):
        offer = self.process(build_request(dhcp.DHCPDISCOVER)).message
        other = "192.168.0.190"
        if offer.your_addr == IPv4Address(other):
            other = "192.168.0.191"
        request = build_request(dhcp.DHCPREQUEST, requested=other)
        ack = self.process(request).message
        self.assertEqual(ack.opts.message_type, dhcp.DHCPACK)
        self.assertEqual(ack.your_addr, offer.your_addr)

        allocation_mgr.init({"nak_unassigned_requests": "True"})
        nak = self.process(request).message
        self.assertEqual(nak.opts.message_type, dhcp.DHCPNAK)

    def test_unknown_subnet(self):
        result = self.process(
            build_request(dhcp.DHCPDISCOVER, giaddr="10.1.1.1")
        )
        self.assertIs(result.kind, ErrorKind.NO_SUBNET)

    def test_release_keeps_lease(self):
        offer = self.process(build_request(dhcp.DHCPDISCOVER)).message
        self.assertIsNone(self.process(build_request(dhcp.DHCPRELEASE)))
        again = self.process(build_request(dhcp.DHCPDISCOVER)).message
        self.assertEqual(again.your_addr, offer.your_addr)

    def test_release_frees_lease(self):
        allocation_mgr.init({"release_frees_lease": "True"})
        self.process(build_request(dhcp.DHCPDISCOVER))
        self.process(build_request(dhcp.DHCPRELEASE))
        self.assertEqual(self.handler.allocator.leases(), [])


if __name__ == "__main__":
    unittest.main()
