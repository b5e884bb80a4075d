"""
TLS server that returns the DNSSEC authentication chain for its own
TLSA record in the dnssec_chain handshake extension.

Start-up builds the chain data once, registers it with the TLS context
once, and only then starts accepting connections. Each connection is
handled in its own thread; threads share nothing but the (read only)
TLS context and chain data.
"""

import sys
import socketserver

from chainlib.prefs import Prefs
from chainlib.exception import ChainError, TLSError
from chainlib.ledger import Ledger
from chainlib.context import Context
from chainlib.chain import resolve_chain
from chainlib.extension import encode, DNSSEC_CHAIN_EXT_TYPE
from chainlib.tls import TLSContext, set_socket_timeout


# Connection states
ACCEPTED = "Accepted"
HANDSHAKING = "Handshaking"
ESTABLISHED = "Established"
FAILED = "Failed"
CLOSED = "Closed"

SESSION_ID_CONTEXT = b"chainserver"


def tlsa_name(port, server_name):
    """TLSA record owner name for the given port and server name"""
    return "_{}._tcp.{}".format(port, server_name)


def hexdump(data, width=16):
    """Return list of hex dump lines of data"""
    lines = []
    for offset in range(0, len(data), width):
        chunk = data[offset:offset+width]
        lines.append("{:04x}: {}".format(
            offset, " ".join("{:02x}".format(x) for x in chunk)))
    return lines


def get_chain_blob(port, server_name, extension_type=DNSSEC_CHAIN_EXT_TYPE,
                   context_factory=Context):
    """
    Obtain the DNSSEC authentication chain for the server's TLSA
    record and return it as a ChainBlob, or None if it could not be
    obtained.
    """

    qname = tlsa_name(port, server_name)
    ledger = Ledger()
    try:
        resolve_chain(ledger, qname, 'TLSA', context_factory=context_factory)
        blob = encode(ledger.snapshot(), extension_type)
    except ChainError as e:
        print("Failed to get DNSSEC chain data for {}: {}".format(qname, e))
        return None
    finally:
        ledger.release()

    print("Got DNSSEC chain data for {}, size={} octets".format(
        qname, len(blob)))
    if Prefs.DEBUG:
        print("\nDEBUG: chain data:")
        for line in hexdump(bytes(blob)):
            print(line)
        print('')
    return blob


def make_tls_context(blob=None, certfile=None, keyfile=None, cafile=None,
                     client_auth=None, tls13_certificate=None):
    """
    Create the server TLS context, and register the chain data with
    it if we have any. Raises TLSError if the CA store, certificate or
    key cannot be loaded. Failure to register the chain data is only
    reported; the server then runs without the extension.
    """

    if certfile is None:
        certfile = Prefs.CERTFILE
    if keyfile is None:
        keyfile = Prefs.KEYFILE
    if cafile is None:
        cafile = Prefs.CAFILE
    if client_auth is None:
        client_auth = Prefs.CLIENTAUTH
    if tls13_certificate is None:
        tls13_certificate = Prefs.TLS13_CERTIFICATE

    context = TLSContext()
    try:
        context.set_min_version()
        context.load_verify_locations(cafile)
        context.set_verify(client_auth=client_auth, depth=Prefs.VERIFY_DEPTH)
        context.load_cert_chain(certfile, keyfile)
        context.set_session_id_context(SESSION_ID_CONTEXT)
    except TLSError:
        context.free()
        raise

    if blob is not None:
        try:
            context.add_serverinfo(bytes(blob),
                                   tls13_certificate=tls13_certificate)
        except TLSError as e:
            print("Failed loading dnssec_chain_data extension: {}".format(e),
                  file=sys.stderr)
    return context


class ChainRequestHandler(socketserver.BaseRequestHandler):
    """
    Per connection handler:
    Accepted -> Handshaking -> Established | Failed -> Closed
    """

    def setup(self):
        self.state = ACCEPTED
        self.session = None

    def handle(self):
        addr, port = self.client_address[0:2]
        print("Connection from {} port={}".format(addr, port))
        set_socket_timeout(self.request, Prefs.HANDSHAKE_TIMEOUT)

        try:
            self.session = self.server.tls_context.new_session(self.request)
            self.state = HANDSHAKING
            self.session.accept()
        except TLSError as e:
            self.state = FAILED
            print("TLS connection failed: {}: {}".format(addr, e),
                  file=sys.stderr)
            return

        self.state = ESTABLISHED
        print("{} Cipher: {}\n".format(self.session.version(),
                                       self.session.cipher()))
        self.session.shutdown()

    def finish(self):
        if self.session is not None:
            self.session.free()
        self.state = CLOSED
        if Prefs.VERBOSE:
            print("# Connection closed: {}".format(self.client_address[0]))


class ChainServer(socketserver.ThreadingTCPServer):
    """Thread per connection TLS server"""

    allow_reuse_address = True
    daemon_threads = True
    request_queue_size = Prefs.LISTEN_BACKLOG

    def __init__(self, port, tls_context, blob=None, address=''):
        self.tls_context = tls_context
        self.blob = blob
        super().__init__((address, port), ChainRequestHandler)

    @property
    def port(self):
        return self.server_address[1]

    def __repr__(self):
        return "<ChainServer: port={} chain={}>".format(
            self.port, "yes" if self.blob else "no")
