import threading
import unittest
from unittest import mock

from scapy.layers.inet import IP, TCP
from scapy.layers.l2 import Ether

from capture.exceptions import CaptureClosedError, CaptureEOFError, CaptureTimeout, ConfigurationError
from capture.icapture_backend import CaptureConfig
from capture.packet_decoder import DLT_EN10MB, extract_headers
from capture.scapy_backend import ScapyCaptureHandle


def ether_packet(dst="10.0.0.5", payload=b"x" * 100):
    packet = (Ether(src="02:00:00:00:00:01", dst="02:00:00:00:00:02")
              / IP(src="192.168.1.10", dst=dst)
              / TCP(sport=50000, dport=443)
              / payload)
    packet.time = 1700000000.25
    return packet


class TestScapyCaptureHandle(unittest.TestCase):
    def test_buffered_frame_decodes(self):
        handle = ScapyCaptureHandle(CaptureConfig(interface="eth0"))
        packet = ether_packet()
        handle._on_packet(packet)

        frame = handle.next_packet(0.01)
        self.assertEqual(frame.link_type, DLT_EN10MB)
        self.assertEqual(frame.original_length, len(bytes(packet)))
        self.assertEqual(frame.timestamp_us, 1700000000250000)
        self.assertEqual(frame.interface, "eth0")
        rec = extract_headers(frame)
        self.assertEqual(rec.dst_ip, "10.0.0.5")
        self.assertEqual(rec.dst_port, 443)

    def test_snaplen_truncates_capture(self):
        handle = ScapyCaptureHandle(CaptureConfig(interface="eth0", snaplen=54))
        packet = ether_packet()
        handle._on_packet(packet)
        frame = handle.next_packet(0.01)
        self.assertEqual(frame.captured_length, 54)
        self.assertTrue(frame.is_truncated)
        self.assertEqual(extract_headers(frame).total_length, len(bytes(packet)))

    def test_full_buffer_drops(self):
        size = len(bytes(ether_packet()))
        handle = ScapyCaptureHandle(CaptureConfig(interface="eth0", buffer_size=size * 2))
        for _ in range(3):
            handle._on_packet(ether_packet())
        stats = handle.get_stats()
        self.assertEqual(stats.received, 3)
        self.assertEqual(stats.dropped, 1)
        self.assertEqual(stats.dropped_by_interface, 0)

    def test_empty_and_not_sniffing_is_eof(self):
        handle = ScapyCaptureHandle(CaptureConfig(interface="eth0"))
        with self.assertRaises(CaptureEOFError):
            handle.next_packet(0.01)

    def test_closed_handle(self):
        handle = ScapyCaptureHandle(CaptureConfig(interface="eth0"))
        handle._on_packet(ether_packet())
        handle.close()
        handle.close()
        with self.assertRaises(CaptureClosedError):
            handle.next_packet(0.01)
        with self.assertRaises(CaptureClosedError):
            handle.get_stats()
        with self.assertRaises(CaptureClosedError):
            handle.activate()

    def test_set_filter_before_activation(self):
        handle = ScapyCaptureHandle(CaptureConfig(interface="eth0"))
        handle.set_filter("udp port 53")
        self.assertEqual(handle._filter, "udp port 53")
        handle.set_filter("")
        self.assertIsNone(handle._filter)


class FailingSniffer:
    """Stands in for AsyncSniffer when opening the capture socket fails."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.running = False
        self.exception = None
        self.thread = None
        self.stopped = False

    def start(self):
        def _run():
            self.exception = OSError("Cannot set filter: libpcap is not available")

        self.running = True
        self.thread = threading.Thread(target=_run)
        self.thread.start()

    def stop(self, join=True):
        self.stopped = True


class WorkingSniffer:
    """Stands in for AsyncSniffer whose socket opens normally."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.running = False
        self.exception = None
        self.thread = None
        self._release = threading.Event()

    def start(self):
        self.running = True
        self.thread = threading.Thread(target=self._release.wait, args=(5,))
        self.thread.start()
        self.kwargs["started_callback"]()

    def stop(self, join=True):
        self.running = False
        self._release.set()
        if join:
            self.thread.join()


class TestSnifferStartup(unittest.TestCase):
    def test_failed_sniffer_start_raises(self):
        with mock.patch("capture.scapy_backend.AsyncSniffer", FailingSniffer):
            handle = ScapyCaptureHandle(CaptureConfig(interface="lo", filter="tcp prt 443"))
            handle.set_filter("tcp prt 443")
            with self.assertRaises(ConfigurationError) as ctx:
                handle.activate()
        self.assertIn("libpcap is not available", str(ctx.exception))
        self.assertIn("lo", str(ctx.exception))

    def test_reads_after_failed_start_are_eof(self):
        with mock.patch("capture.scapy_backend.AsyncSniffer", FailingSniffer):
            handle = ScapyCaptureHandle(CaptureConfig(interface="lo"))
            with self.assertRaises(ConfigurationError):
                handle.activate()
        with self.assertRaises(CaptureEOFError):
            handle.next_packet(0.01)
        handle.close()
        self.assertFalse(handle._sniffer.stopped)

    def test_started_sniffer_times_out_quietly(self):
        with mock.patch("capture.scapy_backend.AsyncSniffer", WorkingSniffer):
            handle = ScapyCaptureHandle(CaptureConfig(interface="lo"))
            handle.set_filter("tcp port 443")
            handle.activate()
        try:
            sniffer = handle._sniffer
            self.assertEqual(sniffer.kwargs["filter"], "tcp port 443")
            self.assertEqual(sniffer.kwargs["iface"], "lo")
            with self.assertRaises(CaptureTimeout):
                handle.next_packet(0.01)
        finally:
            handle.close()
        self.assertFalse(sniffer.thread.is_alive())

    def test_filter_change_restarts_running_sniffer(self):
        with mock.patch("capture.scapy_backend.AsyncSniffer", WorkingSniffer):
            handle = ScapyCaptureHandle(CaptureConfig(interface="lo"))
            handle.activate()
            first = handle._sniffer
            handle.set_filter("udp port 53")
        try:
            self.assertIsNot(handle._sniffer, first)
            self.assertFalse(first.thread.is_alive())
            self.assertEqual(handle._sniffer.kwargs["filter"], "udp port 53")
        finally:
            handle.close()


if __name__ == '__main__':
    unittest.main()
