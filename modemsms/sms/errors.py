"""
Exceptions raised by the modem layer
"""


class ModemError(Exception):
    """Base class for every modem failure"""


class TransportError(ModemError):
    """Serial port could not be opened, written or closed"""


class CommandError(ModemError):
    """An AT command did not complete successfully"""

    def __init__(self, command, response=''):
        self.command = command
        self.response = response
        super().__init__(self._describe())

    def _describe(self):
        return f"Command error: {self.command}"


class CommandRejected(CommandError):
    """The modem answered ERROR"""

    def _describe(self):
        return f"Command rejected: {self.command} ({self.response.strip()!r})"


class CommandTimeout(CommandError):
    """No OK/ERROR arrived before the command timeout"""

    def _describe(self):
        return f"Command timeout: {self.command}"


class DecodeError(ModemError):
    """A stored PDU record could not be decoded"""

    def __init__(self, index, reason):
        self.index = index
        self.reason = reason
        super().__init__(f"Message {index}: {reason}")
