"""
DNS Query class
"""

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rdatatype
import dns.rdataclass

from chainlib.prefs import Prefs
from chainlib.exception import TransportError


class Query:
    """Query name class"""

    def __init__(self, qname, qtype, qclass='IN'):
        try:
            if isinstance(qname, dns.name.Name):
                self.qname = qname
            else:
                self.qname = dns.name.from_text(qname)
            if isinstance(qtype, int):
                self.qtype = qtype
            else:
                self.qtype = dns.rdatatype.from_text(qtype)
            if isinstance(qclass, int):
                self.qclass = qclass
            else:
                self.qclass = dns.rdataclass.from_text(qclass)
        except (dns.exception.DNSException, ValueError) as e:
            raise TransportError("Bad query {} {}: {}".format(qname, qtype, e))
        if dns.rdatatype.is_metatype(self.qtype):
            raise TransportError("Unsupported query type: {}".format(
                dns.rdatatype.to_text(self.qtype)))
        self.elapsed_last = None

    def make_message(self):
        """
        Make DNS query message. Recursion is requested and checking
        disabled (RD=1, CD=1) so that the upstream resolver returns the
        data even if it fails validation; DO=1 to get signatures.
        """
        msg = dns.message.make_query(self.qname,
                                     self.qtype,
                                     rdclass=self.qclass,
                                     use_edns=0,
                                     want_dnssec=True,
                                     payload=Prefs.PAYLOAD)
        msg.flags |= dns.flags.RD | dns.flags.CD
        return msg

    def __repr__(self):
        return "QUERY: {} {} {}".format(self.qname,
                                        dns.rdatatype.to_text(self.qtype),
                                        dns.rdataclass.to_text(self.qclass))
