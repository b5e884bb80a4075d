"""
DNSSEC Authentication Chain TLS extension data.

The extension data is laid out as follows (all integers in network
byte order):

    +------------------+--------------------+--------------------------+
    | Extension Type   | Extension Length   | Authentication Chain     |
    | (2 octets)       | (2 octets)         | (concatenated wire RRs)  |
    +------------------+--------------------+--------------------------+

This is also the format OpenSSL expects for serverinfo data.
"""

import struct

from chainlib.exception import ChainOverflowError, EncodingError


# DNSSEC Authentication Chain TLS extension type value
DNSSEC_CHAIN_EXT_TYPE = 53

# Largest value of the 16-bit extension length field
MAX_EXTENSION_LENGTH = 0xffff

HEADER = struct.Struct('!HH')


class ChainBlob:
    """Immutable dnssec_chain extension: type, length and payload"""

    def __init__(self, extension_type, payload):
        self._extension_type = extension_type
        self._payload = bytes(payload)
        self._wire = HEADER.pack(extension_type, len(self._payload)) + \
            self._payload

    @property
    def extension_type(self):
        return self._extension_type

    @property
    def payload_length(self):
        return len(self._payload)

    @property
    def payload(self):
        return self._payload

    def hex(self):
        """Hex string of the complete extension data"""
        return self._wire.hex()

    def __bytes__(self):
        return self._wire

    def __len__(self):
        return len(self._wire)

    def __eq__(self, other):
        if not isinstance(other, ChainBlob):
            return NotImplemented
        return self._wire == other._wire

    def __hash__(self):
        return hash(self._wire)

    def __repr__(self):
        return "<ChainBlob: type={} length={}>".format(self.extension_type,
                                                      self.payload_length)


def encode(snapshot, extension_type=DNSSEC_CHAIN_EXT_TYPE):
    """
    Serialize the given ledger snapshot (sequence of WireRecord) into
    extension data. Raises ChainOverflowError if the records do not fit
    in the 16-bit length field.
    """

    if not 0 <= extension_type <= 0xffff:
        raise EncodingError("Invalid extension type: {}".format(
            extension_type))

    total = sum(record.length for record in snapshot)
    if total > MAX_EXTENSION_LENGTH:
        raise ChainOverflowError(
            "Chain data too large: {} octets (max {})".format(
                total, MAX_EXTENSION_LENGTH))

    return ChainBlob(extension_type,
                     b''.join(record.data for record in snapshot))
