"""
Turns one listing snapshot of decoded records into user-facing messages:
duplicates dropped, multi-part SMS grouped, gated until complete and merged
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from modemsms.utils.config import SENDER_PREFIX_MIN_LENGTH
from modemsms.utils.logger import setup_logger
from .pdu import DecodedMessage, DecodeFailure, DecodeResult

logger = setup_logger('reassembly')


@dataclass(frozen=True)
class Message:
    index: int
    part_indexes: Tuple[int, ...]
    text: str
    sender: str
    timestamp: Optional[datetime]

    @property
    def parts(self) -> int:
        return len(self.part_indexes)

    @property
    def identity(self):
        return (self.part_indexes, self.sender, self.timestamp, self.text)


@dataclass(frozen=True)
class SinglePartMessage(Message):
    pass


@dataclass(frozen=True)
class ConcatenatedMessage(Message):
    reference_id: str = ''


@dataclass(frozen=True)
class UndecodableMessage(Message):
    """A stored record that could not be decoded; kept so its slot can be deleted"""
    hex_payload: str = ''
    error: str = ''


def international_sender(min_length=SENDER_PREFIX_MIN_LENGTH):
    """Sender formatting policy: '+' for numeric senders of at least min_length digits.

    Short codes and alphanumeric senders ("BANK", "1234") are returned bare.
    """
    def format_sender(sender):
        digits = sender[1:] if sender.startswith('+') else sender
        if digits.isdigit() and len(digits) >= min_length:
            return '+' + digits
        return digits
    return format_sender


def deduplicate(decoded: Sequence[DecodeResult]) -> List[DecodeResult]:
    """Drop records whose decoded content repeats an earlier record.

    Undecodable records have no content to compare; only an exact repeat
    of the same slot and payload is dropped.
    """
    seen = set()
    unique = []
    for record in decoded:
        if isinstance(record, DecodedMessage):
            key = record.content_key
        else:
            key = ('undecodable', record.index, record.hex_payload)
        if key in seen:
            logger.info(f"Duplicate message found at index {record.index}")
            continue
        seen.add(key)
        unique.append(record)
    return unique


def merge_group(members: Sequence[DecodedMessage]) -> Optional[List[DecodedMessage]]:
    """Order a concatenation group by part number, or None while parts are missing"""
    part_count = members[0].concatenation.part_count
    by_part: Dict[int, DecodedMessage] = {}
    for member in members:
        by_part.setdefault(member.concatenation.part_number, member)

    if any(number not in by_part for number in range(1, part_count + 1)):
        return None
    return [by_part[number] for number in range(1, part_count + 1)]


def process(decoded: Sequence[DecodeResult],
            sender_format: Optional[Callable[[str], str]] = None) -> List[Message]:
    """Build the messages of one listing snapshot.

    Single-part records pass through, multi-part records are emitted as one
    message once every part 1..part_count is present and withheld otherwise.
    Messages come out in the order their first record was listed.
    """
    sender_format = sender_format or international_sender()
    records = deduplicate(decoded)

    groups: Dict[Tuple[str, str], List[DecodedMessage]] = {}
    for record in records:
        if isinstance(record, DecodedMessage) and record.concatenation:
            key = (record.sender, record.concatenation.reference_id)
            groups.setdefault(key, []).append(record)

    messages: List[Message] = []
    emitted_groups = set()
    for record in records:
        if isinstance(record, DecodeFailure):
            messages.append(UndecodableMessage(
                index=record.index,
                part_indexes=(record.index,),
                text='',
                sender='',
                timestamp=None,
                hex_payload=record.hex_payload,
                error=record.error,
            ))
        elif record.concatenation is None:
            messages.append(SinglePartMessage(
                index=record.index,
                part_indexes=(record.index,),
                text=record.text,
                sender=sender_format(record.sender),
                timestamp=record.timestamp,
            ))
        else:
            key = (record.sender, record.concatenation.reference_id)
            if key in emitted_groups:
                continue
            emitted_groups.add(key)

            ordered = merge_group(groups[key])
            if ordered is None:
                logger.debug(f"Multi-part message {key[1]} from {key[0]} is incomplete, waiting for more parts")
                continue

            first = ordered[0]
            messages.append(ConcatenatedMessage(
                index=first.index,
                part_indexes=tuple(part.index for part in ordered),
                text=''.join(part.text for part in ordered),
                sender=sender_format(first.sender),
                timestamp=first.timestamp,
                reference_id=first.concatenation.reference_id,
            ))

    return messages
