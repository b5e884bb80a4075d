"""
main() function for command line program chainserver.py
"""


import os
import sys
import random

from chainlib.exception import TLSError
from chainlib.prefs import Prefs
from chainlib.options import process_args
from chainlib.server import get_chain_blob, make_tls_context, ChainServer


def main():
    """
    chainserver.py main() function
    """

    random.seed(os.urandom(64))
    port = process_args(sys.argv[1:])

    blob = get_chain_blob(port, Prefs.SERVER_NAME,
                          extension_type=Prefs.EXTENSION_TYPE)
    if blob is None and Prefs.STRICT:
        print("ERROR: no DNSSEC chain data; not starting (--strict)",
              file=sys.stderr)
        return 1

    try:
        tls_context = make_tls_context(blob)
    except TLSError as exc_info:
        print("ERROR:", exc_info, file=sys.stderr)
        return 1

    try:
        server = ChainServer(port, tls_context, blob)
    except OSError as exc_info:
        print("ERROR: Unable to bind to server address:", exc_info,
              file=sys.stderr)
        tls_context.free()
        return 1

    print("Server listening on port {}".format(port))
    with server:
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            print("\nShutting down.")

    tls_context.free()
    return 0
