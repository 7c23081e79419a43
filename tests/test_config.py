"""Unit tests for configuration loading."""
import json
import os
import tempfile
import unittest

from gateway.config import GatewayConfig, load_config
from gateway.models import DeviceIdentity, RAK4630_IDENTITY
from gateway.sink.http import DEFAULT_SINK_URL


class TestLoadConfig(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def _write(self, data):
        path = os.path.join(self.tmpdir.name, "gateway.json")
        with open(path, "w", encoding="utf-8") as fh:
            if isinstance(data, str):
                fh.write(data)
            else:
                json.dump(data, fh)
        return path

    def test_defaults(self):
        config = load_config()

        self.assertIsInstance(config, GatewayConfig)
        self.assertEqual(config.device.identity, RAK4630_IDENTITY)
        self.assertEqual(config.serial.baud_rate, 9600)
        self.assertEqual(config.serial.line_terminator, b"\r\n")
        self.assertEqual(config.sink.url, DEFAULT_SINK_URL)
        self.assertTrue(config.sink.forward_error_codes)
        self.assertIsNone(config.dispatch.max_workers)
        self.assertEqual(config.bus.backend, "udev")

    def test_file_values(self):
        path = self._write({
            "sink": {"url": "http://collector/ingest", "timeout": 2.5},
            "serial": {"baud_rate": 115200, "warmup_ms": 500},
            "bus": {"backend": "poll"},
        })
        config = load_config(path)

        self.assertEqual(config.sink.url, "http://collector/ingest")
        self.assertEqual(config.sink.timeout, 2.5)
        self.assertEqual(config.serial.baud_rate, 115200)
        self.assertEqual(config.serial.warmup_ms, 500)
        # Untouched keys keep defaults
        self.assertEqual(config.serial.data_bits, 8)
        self.assertEqual(config.bus.backend, "poll")

    def test_overrides_win_over_file(self):
        path = self._write({"sink": {"url": "http://file/ingest"}})
        config = load_config(path, ["sink.url=http://cli/ingest", "dispatch.max_workers=4"])

        self.assertEqual(config.sink.url, "http://cli/ingest")
        self.assertEqual(config.dispatch.max_workers, 4)

    def test_override_coercion(self):
        config = load_config(None, [
            "device.vendor_id=0x1234",
            "device.product_id=0x5678",
            "sink.forward_error_codes=false",
            "bus.poll_interval=0.5",
            "dispatch.max_workers=null",
        ])

        self.assertEqual(config.device.identity, DeviceIdentity(0x1234, 0x5678))
        self.assertFalse(config.sink.forward_error_codes)
        self.assertEqual(config.bus.poll_interval, 0.5)
        self.assertIsNone(config.dispatch.max_workers)

    def test_escaped_terminator(self):
        config = load_config(None, ["serial.line_terminator=\\n"])
        self.assertEqual(config.serial.line_terminator, b"\n")

    def test_unknown_section(self):
        with self.assertRaises(ValueError):
            load_config(None, ["mqtt.host=broker"])

    def test_unknown_key(self):
        path = self._write({"serial": {"baud": 9600}})
        with self.assertRaises(ValueError):
            load_config(path)

    def test_bad_override_syntax(self):
        for item in ("sink.url", "url=http://x", "=1"):
            with self.subTest(item=item):
                with self.assertRaises(ValueError):
                    load_config(None, [item])

    def test_invalid_values(self):
        for item in ("bus.backend=dbus", "bus.poll_interval=0", "dispatch.max_workers=0",
                     "device.vendor_id=0x10000", "sink.timeout=-1"):
            with self.subTest(item=item):
                with self.assertRaises(ValueError):
                    load_config(None, [item])

    def test_file_must_be_object(self):
        path = self._write([1, 2, 3])
        with self.assertRaises(ValueError):
            load_config(path)

    def test_invalid_json(self):
        path = self._write("{not json")
        with self.assertRaises(ValueError):
            load_config(path)

    def test_missing_file(self):
        with self.assertRaises(OSError):
            load_config(os.path.join(self.tmpdir.name, "missing.json"))


if __name__ == '__main__':
    unittest.main()
