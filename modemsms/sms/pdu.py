"""
PDU mode helpers - +CMGL listing parser and the codec adapter around
smspdudecoder (incoming) and python-messaging (outgoing)
"""
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple, Union

from messaging.sms import SmsSubmit
from smspdudecoder.easy import read_incoming_sms

from modemsms.utils.logger import setup_logger
from .errors import DecodeError

logger = setup_logger('pdu')

LIST_HEADER = '+CMGL:'
HEX_PATTERN = re.compile(r'^[0-9A-Fa-f]+$')


@dataclass
class RawPduRecord:
    index: int
    hex_payload: str = ''


@dataclass(frozen=True)
class ConcatInfo:
    reference_id: str
    part_count: int
    part_number: int


@dataclass(frozen=True)
class DecodedMessage:
    index: int
    sender: str
    timestamp: datetime
    text: str
    concatenation: Optional[ConcatInfo] = None

    @property
    def content_key(self):
        """Identity of the decoded content, independent of the storage slot"""
        return (self.sender, self.text, self.timestamp, self.concatenation)


@dataclass(frozen=True)
class DecodeFailure:
    index: int
    hex_payload: str
    error: str


DecodeResult = Union[DecodedMessage, DecodeFailure]


def is_valid_hex(hex_string):
    return bool(hex_string) and HEX_PATTERN.match(hex_string) is not None


def parse_cmgl_listing(response: str) -> List[RawPduRecord]:
    """Split an AT+CMGL=4 response into one record per stored PDU.

    ``+CMGL: <index>,<stat>,[<alpha>],<length>`` starts a record, every
    following line up to the next header is part of its payload. Lines
    before the first header (the command echo) are ignored.
    """
    records = []
    current = None

    for line in response.split('\r\n'):
        line = line.strip()
        if not line or line == 'OK':
            continue

        if line.startswith(LIST_HEADER):
            fields = line[len(LIST_HEADER):].split(',')
            try:
                index = int(fields[0].strip().strip('"'))
            except ValueError:
                logger.warning(f"Unreadable listing header: {line}")
                current = None
                continue
            current = RawPduRecord(index=index)
            records.append(current)
        elif current is not None:
            fragment = re.sub(r'\s', '', line)
            # Unsolicited lines (+CMTI, RING) can land inside a listing
            if not HEX_PATTERN.match(fragment):
                logger.debug(f"Ignoring non-PDU line in message {current.index}: {line}")
                continue
            current.hex_payload += fragment
        else:
            logger.debug(f"Ignoring line outside of a record: {line}")

    return records


def _to_utc(value):
    if not isinstance(value, datetime):
        raise DecodeError(None, f"missing service centre timestamp ({value!r})")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _concat_info(partial):
    if not partial:
        return None
    return ConcatInfo(
        reference_id=str(partial['reference']),
        part_count=int(partial['parts_count']),
        part_number=int(partial['part_number']),
    )


def decode_record(record: RawPduRecord) -> DecodeResult:
    """Decode one stored record; failures come back as DecodeFailure, never raised"""
    if not is_valid_hex(record.hex_payload):
        logger.warning(f"Message {record.index}: invalid hex payload")
        return DecodeFailure(record.index, record.hex_payload, 'Invalid hex string')

    try:
        sms = read_incoming_sms(record.hex_payload)
        return DecodedMessage(
            index=record.index,
            sender=sms['sender'] or '',
            timestamp=_to_utc(sms['date']),
            text=sms['content'] or '',
            concatenation=_concat_info(sms.get('partial')),
        )
    except Exception as e:
        error = DecodeError(record.index, str(e) or e.__class__.__name__)
        logger.warning(str(error))
        return DecodeFailure(record.index, record.hex_payload, error.reason)


def tpdu_length(pdu: str) -> int:
    """Octet count announced in AT+CMGS, i.e. the PDU without the SMSC block"""
    smsc_octets = int(pdu[0:2], 16) + 1
    return (len(pdu) - smsc_octets * 2) // 2


def encode_message(number: str, text: str) -> List[Tuple[int, str]]:
    """Encode text for number as (tpdu_length, hex_pdu) pairs, one per SMS part"""
    parts = []
    for pdu in SmsSubmit(number, text).to_pdu():
        parts.append((tpdu_length(pdu.pdu), pdu.pdu))
    return parts
