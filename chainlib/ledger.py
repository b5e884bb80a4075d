"""
Wire format resource record ledger.

Ordered, append-only collection of DNS resource records in wire format,
along with a running total of their sizes. The records are held in the
order they must appear in the dnssec_chain extension data: the answer
records first, followed by the validation chain records.
"""


class WireRecord:
    """A single resource record in (uncompressed) DNS wire format"""

    def __init__(self, data):
        self.data = bytes(data)

    @property
    def length(self):
        """Size of the record in octets"""
        return len(self.data)

    def __eq__(self, other):
        if not isinstance(other, WireRecord):
            return NotImplemented
        return self.data == other.data

    def __hash__(self):
        return hash(self.data)

    def __repr__(self):
        return "<WireRecord: {} octets {}{}>".format(
            self.length, self.data[:8].hex(),
            "..." if self.length > 8 else "")


class Ledger:
    """Ordered list of WireRecord objects and their aggregate size"""

    def __init__(self):
        self.records = []
        self.size = 0

    def insert(self, record):
        """Append record; never reorders or deduplicates"""
        self.records.append(record)
        self.size += record.length

    def total_size(self):
        """Sum of the sizes of all records inserted so far"""
        return self.size

    def snapshot(self):
        """Read only view of the records in insertion order"""
        return tuple(self.records)

    def release(self):
        """Drop every record held by the ledger"""
        self.records = []
        self.size = 0

    def __len__(self):
        return len(self.records)

    def __iter__(self):
        return iter(self.snapshot())

    def __repr__(self):
        return "<Ledger: {} records, {} octets>".format(len(self.records),
                                                       self.size)
