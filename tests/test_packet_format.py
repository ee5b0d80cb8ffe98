import unittest

from models.packet import PacketRecord
from utils.packet_format import format_packet


class TestFormatPacket(unittest.TestCase):
    def test_addresses_only(self):
        rec = PacketRecord("192.168.1.10", "10.0.0.5", 60, 6, src_port=51000, dst_port=443)
        self.assertEqual(format_packet(rec), "192.168.1.10 > 10.0.0.5")

    def test_with_ports(self):
        rec = PacketRecord("192.168.1.10", "10.0.0.5", 60, 6, src_port=51000, dst_port=443)
        self.assertEqual(format_packet(rec, include_ports=True),
                         "192.168.1.10:51000 > 10.0.0.5:443")

    def test_ipv6_is_bracketed_with_ports(self):
        rec = PacketRecord("2001:db8::1", "2001:db8::2", 80, 0, ip_version=6,
                           src_port=40000, dst_port=53)
        self.assertEqual(format_packet(rec, include_ports=True),
                         "[2001:db8::1]:40000 > [2001:db8::2]:53")
        self.assertEqual(format_packet(rec), "2001:db8::1 > 2001:db8::2")

    def test_missing_ports_are_omitted(self):
        rec = PacketRecord("10.0.0.1", "10.0.0.2", 98, 64, ip_protocol=1, l4_protocol="ICMP")
        self.assertEqual(format_packet(rec, include_ports=True), "10.0.0.1 > 10.0.0.2")


if __name__ == '__main__':
    unittest.main()
