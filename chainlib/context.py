"""
Validating resolution context.

A Context holds the upstream resolvers and the per query validation
state (key cache, authenticated zones, validation chain) used by the
lookup module. Extensions select response behavior:

    dnssec_return_only_secure       report NO_SECURE_ANSWERS for
                                    answers in provably unsigned zones
    dnssec_return_validation_chain  return the DNSKEY, DS, NSEC(3) and
                                    RRSIG records used to validate

"""

import time

import dns.exception

from chainlib.prefs import Prefs
from chainlib.stats import stats
from chainlib.exception import ContextError, TransportError, EncodingError
from chainlib.nameserver import get_upstreams
from chainlib.dnssec import KeyCache
from chainlib.lookup import resolve
from chainlib.utils import to_wire


EXTENSIONS = (
    "dnssec_return_only_secure",
    "dnssec_return_validation_chain",
)


class Context:
    """Validating resolution context"""

    def __init__(self, extensions=None, upstreams=None):
        extensions = dict(extensions or {})
        for name, value in extensions.items():
            if name not in EXTENSIONS:
                raise ContextError("Unknown extension: {}".format(name))
            if not isinstance(value, bool):
                raise ContextError("Extension {} must be boolean".format(name))
        self.only_secure = extensions.get("dnssec_return_only_secure", False)
        self.return_chain = extensions.get("dnssec_return_validation_chain",
                                           False)
        if upstreams is None:
            upstreams = Prefs.RESOLVERS
        self.upstreams = get_upstreams(upstreams)
        self.key_cache = KeyCache()
        self.reset()

    def reset(self):
        """Forget all validation state"""
        self.key_cache.reset()
        self.zones = {}                  # dns.name.Name: authenticated Zone
        self.noncuts = set()             # names known not to be zone cuts
        self.chain = []                  # validation chain, in order
        self.chain_seen = set()

    def general(self, qname, qtype):
        """
        Perform validated resolution of qname/qtype; returns a Response.
        Raises TransportError if the query could not be made at all.
        """
        if self.upstreams is None:
            raise TransportError("Context has been destroyed")
        self.reset()
        stats.reset()
        time_start = time.time()
        response = resolve(self, qname, qtype)
        stats.elapsed = time.time() - time_start
        if Prefs.DEBUG:
            self.key_cache.dump()
        return response

    def rr_to_wire(self, rr):
        """Uncompressed DNS wire format of a single record RRset"""
        try:
            return to_wire(rr)
        except (dns.exception.DNSException, AttributeError,
                TypeError, ValueError) as e:
            raise EncodingError("Failed to convert {} to wire format: {}".format(
                rr, e))

    def destroy(self):
        """Release all resources held by the context"""
        self.reset()
        self.upstreams = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.destroy()
        return False

    def __repr__(self):
        return "<Context: only_secure={} return_chain={}>".format(
            self.only_secure, self.return_chain)
