"""
IPaddress class and upstream resolver list.
"""

import dns.exception
import dns.inet
import dns.resolver

from chainlib.exception import ContextError


class IPaddress:
    """IPaddress class"""

    def __init__(self, ip):
        self.addr = ip
        self.rtt = float('inf')                    # RTT for UDP
        self.query_count = 0

    def __repr__(self):
        return "<IPaddress: {}>".format(self.addr)


def system_resolvers():
    """Return the nameserver addresses from the system configuration"""
    try:
        resolver = dns.resolver.Resolver()
    except (dns.exception.DNSException, OSError) as e:
        raise ContextError("Unable to read system resolver config: {}".format(
            e))
    return list(resolver.nameservers)


def get_upstreams(addresses=None):
    """
    Return list of IPaddress objects for the upstream (recursive)
    resolvers to be used. If no addresses are given, the system resolver
    configuration is used.
    """
    if not addresses:
        addresses = system_resolvers()
    if not addresses:
        raise ContextError("No upstream resolvers configured")
    result = []
    for addr in addresses:
        if not dns.inet.is_address(addr):
            raise ContextError("Invalid resolver address: {}".format(addr))
        if addr not in [x.addr for x in result]:
            result.append(IPaddress(addr))
    return result
