"""
Validated resolution results: response status, reply blocks, and
the DNSSEC validation chain.

"""

import json

import dns.rcode
import dns.rdataclass
import dns.rdatatype


# Response status codes (same numbering as getdns)
RESPSTATUS_GOOD = 900
RESPSTATUS_NO_NAME = 901
RESPSTATUS_ALL_TIMEOUT = 902
RESPSTATUS_NO_SECURE_ANSWERS = 903
RESPSTATUS_ALL_BOGUS_ANSWERS = 904

RESPSTATUS_TEXT = {
    RESPSTATUS_GOOD: "GOOD",
    RESPSTATUS_NO_NAME: "NO_NAME",
    RESPSTATUS_ALL_TIMEOUT: "ALL_TIMEOUT",
    RESPSTATUS_NO_SECURE_ANSWERS: "NO_SECURE_ANSWERS",
    RESPSTATUS_ALL_BOGUS_ANSWERS: "ALL_BOGUS_ANSWERS",
}


def status_text(status):
    """Return text mnemonic for response status code"""
    return RESPSTATUS_TEXT.get(status, "STATUS{}".format(status))


class Reply:
    """
    One reply block: the answer records of one DNS response message,
    as a list of single record RRsets in message order.
    """

    def __init__(self, rcode=dns.rcode.NOERROR, answer=None):
        self.rcode = rcode
        self.answer = answer if answer else []

    def __repr__(self):
        return "<Reply: {} {} records>".format(dns.rcode.to_text(self.rcode),
                                               len(self.answer))


class Response:
    """Result of a validated query"""

    def __init__(self, qname, qtype, status=RESPSTATUS_GOOD):
        self.qname = qname
        self.qtype = qtype
        self.status = status
        self.replies_tree = []              # list of Reply
        self.validation_chain = []          # list of single record RRsets
        self.secure = False
        self.reason = None                  # why not GOOD, if known

    def set_status(self, status, reason=None):
        """Set response status, and optional reason text"""
        self.status = status
        self.reason = reason

    def add_reply(self, reply):
        """Add reply block"""
        self.replies_tree.append(reply)

    def __repr__(self):
        return "<Response: {} {} {}>".format(
            self.qname, dns.rdatatype.to_text(self.qtype),
            status_text(self.status))


def rr_text_list(records):
    """Presentation format of a list of single record RRsets"""
    return [rr.to_text() for rr in records]


def jsonout(response):
    """
    Print JSON encoded results for given response
    """
    result = {}
    result['query'] = {
        "name": response.qname.to_text(),
        "type": dns.rdatatype.to_text(response.qtype),
        "class": dns.rdataclass.to_text(dns.rdataclass.IN),
    }
    result['status'] = status_text(response.status)
    if response.reason:
        result['reason'] = response.reason
    result['secure'] = response.secure
    result['replies'] = []
    for reply in response.replies_tree:
        result['replies'].append({
            "rcode": dns.rcode.to_text(reply.rcode),
            "answer": rr_text_list(reply.answer),
        })
    result['validation_chain'] = rr_text_list(response.validation_chain)
    print(json.dumps(result, indent=2))
