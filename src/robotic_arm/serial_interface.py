import threading

import logging
from typing import Callable, List, Optional, Tuple
import serial
from .exceptions import DeviceNotFoundError, DisconnectedError, WriteError
from .line_framer import LineFramer
from .waiters import PendingWait, ResponseWaiterRegistry

logger = logging.getLogger(__name__)

ChannelFactory = Callable[..., "serial.Serial"]


class SerialInterface:
    """
    Owns one serial connection to the arm controller. A background reader
    thread frames incoming bytes into lines and hands each line, in order,
    to the waiter registry and then to the passive line listeners.
    """

    def __init__(self, port: str, baud_rate: int = 115200,
                 bytesize: int = serial.EIGHTBITS,
                 parity: str = serial.PARITY_NONE,
                 stopbits: float = serial.STOPBITS_ONE,
                 channel_factory: Optional[ChannelFactory] = None,
                 show_communication: bool = True,
                 read_timeout: float = 0.05):
        """
        :param port: Serial port name (e.g., 'COM3' or '/dev/ttyUSB0').
        :param baud_rate: Serial baud rate.
        :param channel_factory: called with the port settings to open the channel.
            Defaults to serial.Serial; anything with the same read/write/close API works.
        :param show_communication: log every sent and received line at DEBUG level
        :param read_timeout: how long a single channel read may block, bounds disconnect latency
        """
        self.port = port
        self.baud_rate = baud_rate
        self.bytesize = bytesize
        self.parity = parity
        self.stopbits = stopbits
        self.channel_factory = channel_factory or serial.Serial
        self.show_communication = show_communication
        self.read_timeout = read_timeout
        self.serial = None  # initialized on connect

        self.waiters = ResponseWaiterRegistry()
        self._line_listeners: List[Callable[[str], None]] = []
        self._listeners_lock = threading.Lock()

        self._write_lock = threading.Lock()
        self._line_seq = 0
        self._framer = LineFramer()
        self._reading = threading.Event()
        self._reader_thread: Optional[threading.Thread] = None

    @property
    def is_connected(self) -> bool:
        channel = self.serial
        return channel is not None and channel.is_open and self._reading.is_set()

    def connect(self) -> None:
        """
        Opens the serial port and starts the reader thread.
        :raises DeviceNotFoundError: the port cannot be opened or configured
        """
        if self.serial is not None:
            self.disconnect()

        logger.info(f"Connecting to port '{self.port}'...")
        try:
            self.serial = self.channel_factory(port=self.port, baudrate=self.baud_rate,
                                               bytesize=self.bytesize, parity=self.parity,
                                               stopbits=self.stopbits, timeout=self.read_timeout)
        except (serial.SerialException, OSError, ValueError) as e:
            self.serial = None
            raise DeviceNotFoundError(f"Could not connect to port {self.port}: {e}") from e
        logger.info(f"Connected to '{self.port}' @ {self.baud_rate} baud")

        self._framer.reset()
        self._reading.set()
        self._reader_thread = threading.Thread(target=self._reader_loop, name=f"serial-reader-{self.port}",
                                               daemon=True)
        self._reader_thread.start()

    def _reader_loop(self):
        """
        Reads the channel until disconnect() or a fatal stream error
        """
        channel = self.serial
        while self._reading.is_set():
            try:
                data = channel.read(channel.in_waiting or 1)
            except (serial.SerialException, OSError, TypeError, AttributeError) as e:
                # TypeError/AttributeError: pyserial raises these when the port is closed under a read
                if self._reading.is_set():
                    logger.error(f"Lost connection: {e}")
                    self._reading.clear()
                    self.waiters.cancel_all(DisconnectedError(f"Lost connection to '{self.port}': {e}"))
                break
            if data:
                for line in self._framer.feed(data.decode('ascii', errors='ignore')):
                    self._handle_line(line)

        # a truncated last line must not complete a wait, listeners still get to see it
        rest = self._framer.flush()
        if rest is not None:
            if self.show_communication:
                logger.debug(f"< {rest} (partial)")
            self._notify_listeners(rest)

    def _handle_line(self, line: str):
        """
        Handles a single serial line sent by the device
        :param line: string containing a single line
        """
        if self.show_communication:
            logger.debug(f"< {line}")

        self._line_seq += 1
        self.waiters.feed(line, self._line_seq)
        self._notify_listeners(line)

    def _notify_listeners(self, line: str):
        with self._listeners_lock:
            listeners = list(self._line_listeners)
        for listener in listeners:
            try:
                listener(line)
            except Exception:
                logger.exception("Line listener failed")

    def add_line_listener(self, listener: Callable[[str], None]) -> None:
        with self._listeners_lock:
            self._line_listeners.append(listener)

    def remove_line_listener(self, listener: Callable[[str], None]) -> None:
        with self._listeners_lock:
            if listener in self._line_listeners:
                self._line_listeners.remove(listener)

    def send_line(self, line: str) -> None:
        """
        Writes a single line to the controller. Delivery is not confirmed;
        wait for the controller's reply line for that.
        :raises WriteError: not connected, or the write failed
        """
        with self._write_lock:
            channel = self.serial
            if channel is None or not channel.is_open or not self._reading.is_set():
                raise WriteError('Serial not open')

            if self.show_communication:
                logger.debug(f"> {line}")
            try:
                channel.write((line + "\n").encode('ascii'))
                channel.flush()
            except (serial.SerialException, OSError) as e:
                raise WriteError(f"Write to '{self.port}' failed: {e}") from e

    def listen_for(self, pattern: str, timeout: float) -> PendingWait:
        return self.waiters.register(pattern, timeout)

    def send_and_listen(self, line: str, pattern: str, timeout: float) -> PendingWait:
        """
        Registers a wait for `pattern` and then sends `line`. The wait is
        registered first so a fast reply cannot arrive before it exists.
        """
        wait = self.listen_for(pattern, timeout)
        try:
            self.send_line(line)
        except WriteError:
            self.waiters.discard(wait)
            raise
        return wait

    def disconnect(self) -> None:
        """
        Closes the connection. Safe to call more than once. Every pending
        wait is failed with DisconnectedError.
        """
        channel = self.serial
        if channel is None:
            return

        steps: List[Tuple[str, Callable[[], None]]] = [
            ("stop reading", self._stop_reader),
            ("flush writer", channel.flush),
            ("reset input buffer", channel.reset_input_buffer),
            ("close port", channel.close),
        ]
        errors = []
        for name, step in steps:
            try:
                step()
            except Exception as e:
                errors.append((name, e))

        for name, e in errors:
            if name == "close port":
                logger.warning(f"Error closing port '{self.port}': {e}")
            else:
                logger.debug(f"Ignored error during '{name}': {e}")

        # a send in progress keeps using the channel it started with
        with self._write_lock:
            self.serial = None
        self.waiters.cancel_all(DisconnectedError(f"Disconnected from '{self.port}'"))
        logger.info(f"Disconnected from '{self.port}'")

    def _stop_reader(self) -> None:
        self._reading.clear()
        thread = self._reader_thread
        self._reader_thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(1.0, self.read_timeout * 10))
            if thread.is_alive():
                raise RuntimeError("Reader thread did not stop")
