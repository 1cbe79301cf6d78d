"""
Minimal ASN.1 DER reader for RPKI signed objects.

Reads definite-length TLV elements from a byte buffer without copying it:
every element is a window (offset, length) over one shared memoryview.
Only the universal types RPKI signed objects use are accepted, together
with context-specific tags. Non-minimal length encodings, indefinite
lengths and high tag numbers are rejected so that no two parsers can
disagree on what a buffer means.
"""

from datetime import datetime, timezone
from typing import Iterator, Optional, Tuple, Union

from rpki_rov.utils.error_handling import MalformedEncoding


BOOLEAN = 0x01
INTEGER = 0x02
BIT_STRING = 0x03
OCTET_STRING = 0x04
NULL = 0x05
OBJECT_IDENTIFIER = 0x06
UTF8_STRING = 0x0c
PRINTABLE_STRING = 0x13
IA5_STRING = 0x16
UTC_TIME = 0x17
GENERALIZED_TIME = 0x18
SEQUENCE = 0x30
SET = 0x31

SUPPORTED_UNIVERSAL_TAGS = frozenset([
    BOOLEAN, INTEGER, BIT_STRING, OCTET_STRING, NULL, OBJECT_IDENTIFIER,
    UTF8_STRING, PRINTABLE_STRING, IA5_STRING, UTC_TIME, GENERALIZED_TIME,
    SEQUENCE, SET,
])

CLASS_MASK = 0xc0
CONTEXT_CLASS = 0x80
CONSTRUCTED = 0x20

# Longest length field accepted: 4 bytes is 4 GiB, far beyond any RPKI object
MAX_LENGTH_OCTETS = 4


def context_tag(number: int, constructed: bool = True) -> int:
    """Tag byte for a low-number context-specific tag"""
    if not 0 <= number < 31:
        raise ValueError(f"Context tag number {number} not supported")
    return CONTEXT_CLASS | (CONSTRUCTED if constructed else 0) | number


class DERElement:
    """One decoded TLV, addressed by offsets into the shared buffer"""

    __slots__ = ('_buffer', 'tag', 'offset', 'header_length', 'length')

    def __init__(self, buffer: memoryview, tag: int, offset: int,
                 header_length: int, length: int):
        self._buffer = buffer
        self.tag = tag
        self.offset = offset
        self.header_length = header_length
        self.length = length

    @property
    def content_offset(self) -> int:
        return self.offset + self.header_length

    @property
    def end(self) -> int:
        return self.content_offset + self.length

    @property
    def constructed(self) -> bool:
        return bool(self.tag & CONSTRUCTED)

    @property
    def content(self) -> memoryview:
        return self._buffer[self.content_offset:self.end]

    @property
    def encoded(self) -> memoryview:
        """Complete TLV encoding, header included"""
        return self._buffer[self.offset:self.end]

    def children(self) -> 'DERReader':
        """Reader scoped to this element's content"""
        if not self.constructed:
            raise MalformedEncoding(f"Tag 0x{self.tag:02x} is not a constructed type",
                                    offset=self.offset)
        return DERReader(self._buffer, self.content_offset, self.end)

    def as_integer(self) -> int:
        if self.tag != INTEGER:
            self._wrong_type("INTEGER")
        data = self.content
        if len(data) == 0:
            raise MalformedEncoding("Empty INTEGER", offset=self.offset)
        if len(data) > 1:
            if (data[0] == 0x00 and not data[1] & 0x80) or (data[0] == 0xff and data[1] & 0x80):
                raise MalformedEncoding("Non-minimal INTEGER encoding", offset=self.offset)
        return int.from_bytes(bytes(data), 'big', signed=True)

    def as_octets(self) -> bytes:
        if self.tag != OCTET_STRING and self.tag != context_tag(0, constructed=False):
            self._wrong_type("OCTET STRING")
        return bytes(self.content)

    def as_oid(self) -> str:
        if self.tag != OBJECT_IDENTIFIER:
            self._wrong_type("OBJECT IDENTIFIER")
        data = self.content
        if len(data) == 0:
            raise MalformedEncoding("Empty OBJECT IDENTIFIER", offset=self.offset)
        arcs = []
        value = 0
        fresh = True
        for byte in data:
            if fresh and byte == 0x80:
                raise MalformedEncoding("Non-minimal OBJECT IDENTIFIER arc", offset=self.offset)
            value = (value << 7) | (byte & 0x7f)
            fresh = not byte & 0x80
            if fresh:
                arcs.append(value)
                value = 0
        if not fresh:
            raise MalformedEncoding("Truncated OBJECT IDENTIFIER", offset=self.offset)
        first = arcs[0]
        if first < 40:
            head = [0, first]
        elif first < 80:
            head = [1, first - 40]
        else:
            head = [2, first - 80]
        return '.'.join(str(arc) for arc in head + arcs[1:])

    def as_bit_string(self) -> Tuple[int, bytes]:
        """Return (unused_bits, data)"""
        if self.tag != BIT_STRING:
            self._wrong_type("BIT STRING")
        data = self.content
        if len(data) == 0:
            raise MalformedEncoding("BIT STRING missing unused-bits octet", offset=self.offset)
        unused = data[0]
        if unused > 7 or (len(data) == 1 and unused != 0):
            raise MalformedEncoding(f"Invalid BIT STRING unused-bits count {unused}",
                                    offset=self.offset)
        return unused, bytes(data[1:])

    def as_time(self) -> datetime:
        if self.tag == UTC_TIME:
            text, fmt = self._ascii(), "%y%m%d%H%M%SZ"
        elif self.tag == GENERALIZED_TIME:
            text, fmt = self._ascii(), "%Y%m%d%H%M%SZ"
        else:
            self._wrong_type("UTCTime or GeneralizedTime")
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            raise MalformedEncoding(f"Invalid time value '{text}'", offset=self.offset)
        if self.tag == UTC_TIME and parsed.year >= 2050:
            # RFC 5280: two-digit years 50-99 are 19xx
            parsed = parsed.replace(year=parsed.year - 100)
        return parsed.replace(tzinfo=timezone.utc)

    def expect_null(self) -> None:
        if self.tag != NULL or self.length != 0:
            self._wrong_type("NULL")

    def _ascii(self) -> str:
        try:
            return bytes(self.content).decode('ascii')
        except UnicodeDecodeError:
            raise MalformedEncoding("Non-ASCII time value", offset=self.offset)

    def _wrong_type(self, expected: str):
        raise MalformedEncoding(f"Expected {expected}, found tag 0x{self.tag:02x}",
                                offset=self.offset)

    def __repr__(self) -> str:
        return f"DERElement(tag=0x{self.tag:02x}, offset={self.offset}, length={self.length})"


class DERReader:
    """Cursor over a run of consecutive DER elements"""

    def __init__(self, data: Union[bytes, bytearray, memoryview], start: int = 0,
                 end: Optional[int] = None):
        self._buffer = data if isinstance(data, memoryview) else memoryview(data)
        self._position = start
        self._end = len(self._buffer) if end is None else end
        if not 0 <= start <= self._end <= len(self._buffer):
            raise MalformedEncoding("Reader window outside buffer", offset=start)

    @property
    def position(self) -> int:
        return self._position

    def at_end(self) -> bool:
        return self._position >= self._end

    def peek_tag(self) -> Optional[int]:
        if self.at_end():
            return None
        return self._buffer[self._position]

    def read(self, expected_tag: Optional[int] = None, what: Optional[str] = None) -> DERElement:
        """Read the next element, advancing past it"""
        element = self._decode_header(self._position)
        if expected_tag is not None and element.tag != expected_tag:
            label = what or f"tag 0x{expected_tag:02x}"
            raise MalformedEncoding(f"Expected {label}, found tag 0x{element.tag:02x}",
                                    offset=element.offset)
        self._position = element.end
        return element

    def read_optional(self, tag: int) -> Optional[DERElement]:
        if self.peek_tag() != tag:
            return None
        return self.read(tag)

    def expect_end(self, what: str = "structure") -> None:
        if not self.at_end():
            raise MalformedEncoding(f"Trailing data after {what}", offset=self._position)

    def __iter__(self) -> Iterator[DERElement]:
        while not self.at_end():
            yield self.read()

    def _decode_header(self, offset: int) -> DERElement:
        buffer = self._buffer
        end = self._end
        if offset >= end:
            raise MalformedEncoding("Unexpected end of data", offset=offset)

        tag = buffer[offset]
        if tag & 0x1f == 0x1f:
            raise MalformedEncoding("High tag numbers are not supported", offset=offset)
        if tag & CLASS_MASK == 0:
            if tag not in SUPPORTED_UNIVERSAL_TAGS:
                raise MalformedEncoding(f"Unsupported tag 0x{tag:02x}", offset=offset)
        elif tag & CLASS_MASK != CONTEXT_CLASS:
            raise MalformedEncoding(f"Unsupported tag class in 0x{tag:02x}", offset=offset)

        cursor = offset + 1
        if cursor >= end:
            raise MalformedEncoding("Missing length octet", offset=offset)
        first = buffer[cursor]
        cursor += 1

        if first < 0x80:
            length = first
        elif first == 0x80:
            raise MalformedEncoding("Indefinite length encoding is not DER", offset=offset)
        else:
            count = first & 0x7f
            if count > MAX_LENGTH_OCTETS:
                raise MalformedEncoding(f"Length field of {count} octets too large", offset=offset)
            if cursor + count > end:
                raise MalformedEncoding("Truncated length field", offset=offset)
            length_bytes = buffer[cursor:cursor + count]
            if length_bytes[0] == 0:
                raise MalformedEncoding("Non-minimal length encoding", offset=offset)
            length = int.from_bytes(bytes(length_bytes), 'big')
            if length < 0x80:
                raise MalformedEncoding("Non-minimal length encoding", offset=offset)
            cursor += count

        if cursor + length > end:
            raise MalformedEncoding(
                f"Element length {length} overruns available {end - cursor} bytes",
                offset=offset
            )
        return DERElement(buffer, tag, offset, cursor - offset, length)


def read_single(data: Union[bytes, memoryview], expected_tag: int, what: str) -> DERElement:
    """Decode a buffer that must hold exactly one element of `expected_tag`"""
    reader = DERReader(data)
    element = reader.read(expected_tag, what)
    reader.expect_end(what)
    return element
