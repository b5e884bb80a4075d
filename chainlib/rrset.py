"""
RRset class. Contains an RRset and associated signatures.
"""

import dns.name
import dns.rdatatype
import dns.rrset


class RRset:
    """Class to hold an RRset and associated signatures if any"""

    def __init__(self, rrname, rrtype, rrset=None, rrsig=None):
        self.rrname = rrname
        self.rrtype = rrtype
        self.validated = False
        self.rrset = rrset if rrset else None
        self.rrsig = rrsig if rrsig else None

    def set_rrsig(self, rrsig):
        """Set rrsig"""
        self.rrsig = rrsig

    def set_rrset(self, rrset):
        """Set rrset"""
        self.rrset = rrset

    def set_validated(self):
        """Set status to validated (after DNSSEC validation)"""
        self.validated = True

    def signer(self):
        """Signer name of the first signature, or None if unsigned"""
        if not self.rrsig:
            return None
        return self.rrsig[0].signer

    def wildcard(self):
        """Return wildcard name, if wildcard synthesis present"""
        num_labels = len(self.rrname.labels)
        rrsig_lcount = self.rrsig[0].labels + 1
        if num_labels == rrsig_lcount:
            return None
        label_tuple = (b'*',) + self.rrname.labels[num_labels-rrsig_lcount:]
        return dns.name.Name(label_tuple)

    def records(self):
        """
        Return list of single record RRsets: the records of the RRset
        followed by those of its signature set.
        """
        result = []
        for rrset in (self.rrset, self.rrsig):
            if rrset is not None:
                result += split_rrset(rrset)
        return result

    def __repr__(self):
        return "<RRset: {}/{}{}>".format(self.rrname,
                                         dns.rdatatype.to_text(self.rrtype),
                                         " (signed)" if self.rrsig else "")


def split_rrset(rrset):
    """Split a dnspython RRset into a list of single record RRsets"""
    return [dns.rrset.from_rdata(rrset.name, rrset.ttl, rdata)
            for rdata in rrset]
