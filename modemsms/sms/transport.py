"""
Serial transport - owns the port, frames inbound lines and dispatches data to listeners
"""
import threading
import time

import serial
import serial.tools.list_ports

from modemsms.utils.config import SERIAL_BAUDRATE, SERIAL_TIMEOUT, LINE_DELIMITER
from modemsms.utils.logger import setup_logger, print_status, log_traffic
from .errors import TransportError

logger = setup_logger('transport')


class LineFramer:
    """Split an inbound text stream into lines, keeping the unterminated tail"""

    def __init__(self, delimiter=LINE_DELIMITER):
        self.delimiter = delimiter
        self._pending = ''

    def feed(self, text):
        self._pending += text
        *lines, self._pending = self._pending.split(self.delimiter)
        return [line for line in lines if line]

    def reset(self):
        self._pending = ''


class Transport:
    """Listener registry shared by every transport.

    Chunk listeners receive raw inbound text exactly as it was read (the
    SMS prompt '> ' arrives without a line terminator). Line listeners
    receive complete lines only.
    """

    def __init__(self, delimiter=LINE_DELIMITER):
        self._listeners = []
        self._line_listeners = []
        self._listeners_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._framer = LineFramer(delimiter)

    @property
    def is_open(self):
        raise NotImplementedError

    def open(self):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def _write(self, data):
        raise NotImplementedError

    def write(self, data):
        if isinstance(data, str):
            data = data.encode()
        if not self.is_open:
            raise TransportError("Port not open")
        with self._write_lock:
            log_traffic('<<', data)
            self._write(data)

    def add_listener(self, listener):
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener):
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def add_line_listener(self, listener):
        with self._listeners_lock:
            self._line_listeners.append(listener)

    def remove_line_listener(self, listener):
        with self._listeners_lock:
            if listener in self._line_listeners:
                self._line_listeners.remove(listener)

    @property
    def listener_count(self):
        with self._listeners_lock:
            return len(self._listeners)

    def _dispatch(self, text):
        log_traffic('>>', text)
        with self._listeners_lock:
            listeners = list(self._listeners)
            line_listeners = list(self._line_listeners)

        for listener in listeners:
            self._call(listener, text)

        for line in self._framer.feed(text):
            for listener in line_listeners:
                self._call(listener, line)

    @staticmethod
    def _call(listener, data):
        try:
            listener(data)
        except Exception:
            logger.exception(f"Listener {listener!r} failed on {data!r}")


class SerialTransport(Transport):
    """pyserial port with a reader thread"""

    def __init__(self, port, baudrate=SERIAL_BAUDRATE, timeout=SERIAL_TIMEOUT, delimiter=LINE_DELIMITER):
        super().__init__(delimiter)
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.error = None
        self._serial = None
        self._reader = None
        self._running = False

    @property
    def is_open(self):
        return self._running and self._serial is not None and self._serial.is_open

    def open(self):
        try:
            self._serial = serial.Serial(self.port, self.baudrate, timeout=self.timeout)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Cannot open {self.port}: {e}") from e

        self.error = None
        self._framer.reset()
        self._running = True
        self._reader = threading.Thread(target=self._read_loop, name=f"reader-{self.port}", daemon=True)
        self._reader.start()
        logger.info(f"Serial port {self.port} opened at {self.baudrate} baud")

    def close(self):
        self._running = False
        if self._reader and self._reader is not threading.current_thread():
            self._reader.join(timeout=self.timeout + 1)
        self._reader = None
        if self._serial is None:
            return
        try:
            self._serial.close()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Cannot close {self.port}: {e}") from e
        finally:
            self._serial = None
        logger.info(f"Serial port {self.port} closed")

    def _write(self, data):
        try:
            self._serial.write(data)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write to {self.port} failed: {e}") from e

    def _read_loop(self):
        while self._running:
            try:
                data = self._serial.read(self._serial.in_waiting or 1)
            except (serial.SerialException, OSError) as e:
                if self._running:
                    logger.error(f"Serial read failed on {self.port}: {e}")
                    self.error = TransportError(str(e))
                    self._running = False
                break
            if data:
                self._dispatch(data.decode(errors='ignore'))


def find_modem_port(baudrate=SERIAL_BAUDRATE):
    """Find a port with a modem answering AT"""
    print_status("Searching for GSM modem...", "INFO")
    ports = list(serial.tools.list_ports.comports())

    for port in ports:
        try:
            with serial.Serial(port.device, baudrate, timeout=2) as ser:
                ser.write(b'AT\r')
                time.sleep(0.5)
                response = ser.read_all().decode(errors='ignore')
                if 'OK' in response:
                    print_status(f"Modem found on {port.device}", "SUCCESS")
                    return port.device
        except (serial.SerialException, OSError):
            continue

    print_status("No GSM modem found", "ERROR")
    return None
