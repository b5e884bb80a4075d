"""
usage string function
"""

import os
import sys
from chainlib.version import VERSION
from chainlib.prefs import Prefs

PROGNAME = os.path.basename(sys.argv[0])

def usage(message=None):
    """Print usage string, preceded by optional message"""
    if message:
        print(message)
    print("""
{0} version {1}
TLS server that returns the DNSSEC authentication chain for its own
TLSA record (_<port>._tcp.<server name>) in TLS extension type {2}.

    Usage: {0} [Options] <port>

     Options:
     -h: print this usage message
     -d: debug mode (hex dump chain data)
     -v: increase verbosity level by 1 (default 0)
     -s: print resolver statistics
     -j: print validated TLSA response as JSON
     -t: use TCP only for DNS queries
     -eN: use EDNS0 buffer size N (default: {3})
     -r <addr>: upstream resolver address (repeatable; default: system)
     --sname <name>: server name (default: this host's name)
     --cert <file>: server certificate chain file (default: {4})
     --key <file>: server private key file (default: {5})
     --CAfile <file>: CA file for client certificates
     --clientauth: require client certificate authentication
     --exttype N: TLS extension type for the chain data (default: {2})
     --strict: refuse to start without DNSSEC chain data
     --tls13cert: also send the chain in the TLS 1.3 Certificate message
    """.format(PROGNAME, VERSION, Prefs.EXTENSION_TYPE, Prefs.PAYLOAD,
               Prefs.CERTFILE, Prefs.KEYFILE))
    sys.exit(1)
