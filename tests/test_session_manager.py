"""Unit tests for DeviceSessionManager.

Tests verify:
- State transitions on attach/detach
- Open failures leave the manager FAULTED and retryable
- Single-device policy
- Frames are routed through the dispatcher to the processor
"""
import time
import unittest
from unittest.mock import MagicMock

from gateway.device.bus import BusMonitor
from gateway.device.channel import SerialChannel
from gateway.device.port_finder import PortInfo
from gateway.device.session import DeviceSessionManager
from gateway.errors import NoDeviceFound, PortOpenFailed, ReadFailed
from gateway.models import DeviceIdentity, RAK4630_IDENTITY, SerialConfig, SessionState
from gateway.protocol.dispatcher import FrameDispatcher
from gateway.protocol.processor import CommandProcessor

OTHER_DEVICE = DeviceIdentity(0x0403, 0x6001)
PORT = PortInfo("/dev/ttyACM0", 0x239A, 0x8029, "RAKwireless", "WisCore", "1", "")


class InlineDispatcher(FrameDispatcher):
    """Runs handlers synchronously so tests can assert right away."""

    def dispatch(self, frame, handler):
        if frame:
            handler(frame)


class FakeBus(BusMonitor):

    def __init__(self):
        super().__init__()
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def attach(self, identity=RAK4630_IDENTITY):
        self._notify_attach(identity)

    def detach(self, identity=RAK4630_IDENTITY):
        self._notify_detach(identity)


class SessionManagerTestCase(unittest.TestCase):

    def setUp(self):
        self.channels = []
        self.open_error = None
        self.processor = MagicMock(spec=CommandProcessor)
        self.dispatcher = InlineDispatcher()
        self.bus = FakeBus()
        self.manager = DeviceSessionManager(
            self.processor,
            serial_config=SerialConfig(warmup_ms=0),
            dispatcher=self.dispatcher,
            bus=self.bus,
            channel_factory=self._make_channel,
        )

    def _make_channel(self, identity, config):
        channel = MagicMock(spec=SerialChannel)
        if self.open_error is not None:
            channel.open.side_effect = self.open_error
        else:
            channel.open.return_value = PORT
        self.channels.append(channel)
        return channel

    def _frame_callback(self, channel):
        """The on_frame callback the manager registered on a channel."""
        return channel.start_listening.call_args.args[0]


class TestTransitions(SessionManagerTestCase):

    def test_initially_detached(self):
        self.assertEqual(self.manager.state, SessionState.DETACHED)
        self.assertIsNone(self.manager.channel)

    def test_attach_opens_and_listens(self):
        self.manager.on_attach(RAK4630_IDENTITY)

        self.assertEqual(self.manager.state, SessionState.ATTACHED)
        self.assertTrue(self.manager.is_attached)
        self.assertEqual(len(self.channels), 1)
        channel = self.channels[0]
        channel.open.assert_called_once()
        channel.start_listening.assert_called_once()
        self.assertIs(self.manager.channel, channel)

    def test_detach_closes(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        channel = self.channels[0]

        self.manager.on_detach(RAK4630_IDENTITY)

        self.assertEqual(self.manager.state, SessionState.DETACHED)
        channel.close.assert_called_once()
        self.assertIsNone(self.manager.channel)

    def test_reattach_creates_new_channel(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        self.manager.on_detach(RAK4630_IDENTITY)
        self.manager.on_attach(RAK4630_IDENTITY)

        self.assertEqual(self.manager.state, SessionState.ATTACHED)
        self.assertEqual(len(self.channels), 2)
        self.assertIs(self.manager.channel, self.channels[1])

    def test_detach_while_detached_is_noop(self):
        self.manager.on_detach(RAK4630_IDENTITY)
        self.assertEqual(self.manager.state, SessionState.DETACHED)
        self.assertEqual(self.channels, [])

    def test_unrelated_device_ignored(self):
        self.manager.on_attach(OTHER_DEVICE)
        self.assertEqual(self.manager.state, SessionState.DETACHED)
        self.assertEqual(self.channels, [])

        self.manager.on_attach(RAK4630_IDENTITY)
        self.manager.on_detach(OTHER_DEVICE)
        self.assertEqual(self.manager.state, SessionState.ATTACHED)

    def test_second_attach_rejected(self):
        self.manager.on_attach(RAK4630_IDENTITY)

        with self.assertLogs('gateway.device.session', level='WARNING'):
            self.manager.on_attach(RAK4630_IDENTITY)

        self.assertEqual(len(self.channels), 1)
        self.assertEqual(self.manager.state, SessionState.ATTACHED)
        self.channels[0].close.assert_not_called()


class TestOpenFailures(SessionManagerTestCase):

    def test_no_device_faults(self):
        self.open_error = NoDeviceFound("gone")
        self.manager.on_attach(RAK4630_IDENTITY)

        self.assertEqual(self.manager.state, SessionState.FAULTED)
        self.assertIsNone(self.manager.channel)
        self.channels[0].close.assert_called_once()

    def test_port_open_failed_faults(self):
        self.open_error = PortOpenFailed("busy", port="/dev/ttyACM0")
        self.manager.on_attach(RAK4630_IDENTITY)
        self.assertEqual(self.manager.state, SessionState.FAULTED)

    def test_unexpected_error_faults(self):
        self.open_error = RuntimeError("driver bug")
        self.manager.on_attach(RAK4630_IDENTITY)
        self.assertEqual(self.manager.state, SessionState.FAULTED)

    def test_factory_error_faults(self):
        def broken_factory(identity, config):
            raise RuntimeError("no channel")

        manager = DeviceSessionManager(self.processor, channel_factory=broken_factory)
        manager.on_attach(RAK4630_IDENTITY)
        self.assertEqual(manager.state, SessionState.FAULTED)

    def test_attach_retries_after_fault(self):
        self.open_error = NoDeviceFound("not yet")
        self.manager.on_attach(RAK4630_IDENTITY)

        self.open_error = None
        self.manager.on_attach(RAK4630_IDENTITY)

        self.assertEqual(self.manager.state, SessionState.ATTACHED)

    def test_detach_clears_fault(self):
        self.open_error = NoDeviceFound("gone")
        self.manager.on_attach(RAK4630_IDENTITY)
        self.manager.on_detach(RAK4630_IDENTITY)
        self.assertEqual(self.manager.state, SessionState.DETACHED)

    def test_close_clears_fault(self):
        self.open_error = NoDeviceFound("gone")
        self.manager.on_attach(RAK4630_IDENTITY)
        self.manager.close()
        self.assertEqual(self.manager.state, SessionState.DETACHED)


class TestChannelFaults(SessionManagerTestCase):
    """A channel that dies without a detach event."""

    def _error_callback(self, channel):
        return channel.start_listening.call_args.kwargs["on_error"]

    def _wait_for_state(self, state, timeout=2.0):
        deadline = time.monotonic() + timeout
        while self.manager.state != state and time.monotonic() < deadline:
            time.sleep(0.01)
        return self.manager.state

    def test_read_error_faults_session(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        channel = self.channels[0]

        self._error_callback(channel)(ReadFailed("device disconnected"))

        self.assertEqual(self._wait_for_state(SessionState.FAULTED), SessionState.FAULTED)
        self.assertIsNone(self.manager.channel)
        channel.close.assert_called_once()

    def test_attach_after_read_error_reopens(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        self._error_callback(self.channels[0])(ReadFailed("device disconnected"))
        self._wait_for_state(SessionState.FAULTED)

        self.manager.on_attach(RAK4630_IDENTITY)

        self.assertEqual(self.manager.state, SessionState.ATTACHED)
        self.assertEqual(len(self.channels), 2)
        self.assertIs(self.manager.channel, self.channels[1])

    def test_attach_reopens_dead_channel(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        dead = self.channels[0]
        dead.is_open = False

        with self.assertLogs('gateway.device.session', level='WARNING'):
            self.manager.on_attach(RAK4630_IDENTITY)

        dead.close.assert_called_once()
        self.assertEqual(self.manager.state, SessionState.ATTACHED)
        self.assertIs(self.manager.channel, self.channels[1])

    def test_stale_channel_error_ignored(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        old_callback = self._error_callback(self.channels[0])
        self.manager.on_detach(RAK4630_IDENTITY)
        self.manager.on_attach(RAK4630_IDENTITY)

        old_callback(ReadFailed("late"))
        time.sleep(0.1)

        self.assertEqual(self.manager.state, SessionState.ATTACHED)
        self.channels[1].close.assert_not_called()

    def test_detach_after_read_error(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        self._error_callback(self.channels[0])(ReadFailed("device disconnected"))
        self._wait_for_state(SessionState.FAULTED)

        self.manager.on_detach(RAK4630_IDENTITY)
        self.assertEqual(self.manager.state, SessionState.DETACHED)


class TestClose(SessionManagerTestCase):

    def test_close_open_session(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        self.manager.close()

        self.assertEqual(self.manager.state, SessionState.DETACHED)
        self.channels[0].close.assert_called_once()

    def test_close_without_session(self):
        self.manager.close()
        self.manager.close()
        self.assertEqual(self.manager.state, SessionState.DETACHED)

    def test_channel_close_error_still_detaches(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        self.channels[0].close.side_effect = OSError("EIO")

        self.manager.on_detach(RAK4630_IDENTITY)

        self.assertEqual(self.manager.state, SessionState.DETACHED)


class TestFrameRouting(SessionManagerTestCase):

    def test_frame_reaches_processor_with_channel(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        channel = self.channels[0]

        self._frame_callback(channel)(b'{"command":1}')

        self.processor.process.assert_called_once_with(b'{"command":1}', channel)

    def test_frames_use_channel_they_arrived_on(self):
        self.manager.on_attach(RAK4630_IDENTITY)
        first = self.channels[0]
        first_callback = self._frame_callback(first)
        self.manager.on_detach(RAK4630_IDENTITY)
        self.manager.on_attach(RAK4630_IDENTITY)

        first_callback(b"late")

        self.processor.process.assert_called_once_with(b"late", first)


class TestBusIntegration(SessionManagerTestCase):

    def test_start_subscribes_and_starts_bus(self):
        self.assertTrue(self.manager.start())
        self.assertTrue(self.bus.started)

        self.bus.attach()
        self.assertEqual(self.manager.state, SessionState.ATTACHED)
        self.bus.detach()
        self.assertEqual(self.manager.state, SessionState.DETACHED)

    def test_start_twice_subscribes_once(self):
        self.manager.start()
        self.manager.start()
        self.bus.attach()
        self.assertEqual(len(self.channels), 1)

    def test_start_failure(self):
        self.bus.start = MagicMock(side_effect=OSError("netlink unavailable"))
        self.assertFalse(self.manager.start())

    def test_stop_unsubscribes_and_closes(self):
        self.manager.start()
        self.bus.attach()
        channel = self.channels[0]

        self.manager.stop()

        self.assertTrue(self.bus.stopped)
        channel.close.assert_called_once()
        self.assertEqual(self.manager.state, SessionState.DETACHED)

        self.bus.attach()
        self.assertEqual(len(self.channels), 1)

    def test_start_without_bus(self):
        manager = DeviceSessionManager(self.processor, channel_factory=self._make_channel)
        self.assertTrue(manager.start())
        manager.stop()


if __name__ == '__main__':
    unittest.main()
