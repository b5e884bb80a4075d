"""
Miscellaneous helper functions.
"""

import time
import random
from io import BytesIO

import dns.exception
import dns.flags
import dns.query
import dns.rdatatype

from chainlib.prefs import Prefs
from chainlib.stats import stats


def vprint(level=1):
    """Is verbosity at least level?"""
    return Prefs.VERBOSE >= level


def is_truncated(msg):
    """Does DNS message have truncated (TC) flag set?"""
    return msg.flags & dns.flags.TC == dns.flags.TC


def to_wire(record):
    """Wire format of a dnspython RRset or rdata (uncompressed)"""
    s = BytesIO()
    record.to_wire(s)
    return s.getvalue()


def send_query_tcp(msg, nsaddr, timeout=None):
    """Send query over TCP"""
    res = None
    if timeout is None:
        timeout = Prefs.TIMEOUT
    stats.update_query(tcp=True)
    try:
        res = dns.query.tcp(msg, nsaddr.addr, timeout=timeout)
    except dns.exception.Timeout:
        stats.cnt_timeout += 1
        print("WARN: TCP query timeout for {}".format(nsaddr.addr))
    return res


def send_query_udp(msg, nsaddr, timeout=None, retries=None):
    """Send query over UDP"""
    gotresponse = False
    res = None
    if timeout is None:
        timeout = Prefs.TIMEOUT
    if retries is None:
        retries = Prefs.RETRIES
    while (not gotresponse) and (retries > 0):
        retries -= 1
        stats.update_query()
        try:
            t0 = time.time()
            res = dns.query.udp(msg, nsaddr.addr, timeout=timeout)
            nsaddr.rtt = time.time() - t0
            gotresponse = True
        except dns.exception.Timeout:
            stats.cnt_timeout += 1
            print("WARN: UDP query timeout for {}".format(nsaddr.addr))
    return res


def send_query(msg, nsaddr, timeout=None, retries=None, newid=False):
    """send DNS query to specified address"""
    res = None
    nsaddr.query_count += 1
    if newid:
        msg.id = random.randint(1, 65535)

    if Prefs.TCPONLY:
        return send_query_tcp(msg, nsaddr, timeout=timeout)

    res = send_query_udp(msg, nsaddr, timeout=timeout, retries=retries)
    if res and is_truncated(res):
        if vprint():
            print("WARN: response from {} was truncated; retrying with TCP".format(
                nsaddr.addr))
        stats.cnt_tcp_fallback += 1
        res = send_query_tcp(msg, nsaddr, timeout=timeout)
    return res


def get_rrset_from_section(message, section, qname, qtype):
    """
    From given DNS message/section return answer RRset and
    signature RRset for specified qname and qtype.
    """
    rrset = message.get_rrset(section, qname, 1, qtype)
    rrsigs = message.get_rrset(section, qname, 1,
                               dns.rdatatype.RRSIG, covers=qtype)
    return rrset, rrsigs
