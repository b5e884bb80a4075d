"""
Command line option processing.
"""


import getopt
import socket

from chainlib.prefs import Prefs
from chainlib.usage import usage


def get_int(optname, optval, low, high):
    """Convert option value to an integer in the range low..high"""
    try:
        value = int(optval)
    except ValueError:
        usage("ERROR: {} requires an integer argument".format(optname))
    if not low <= value <= high:
        usage("ERROR: {} must be in the range {}..{}".format(
            optname, low, high))
    return value


def process_args(arguments):
    """Process all command line arguments; returns the port number"""

    try:
        (options, args) = getopt.getopt(arguments, 'hdvsjte:r:',
                                        ["sname=", "cert=", "key=", "CAfile=",
                                         "clientauth", "exttype=", "strict",
                                         "tls13cert"])
    except getopt.GetoptError as e:
        usage("ERROR: {}".format(e))

    for (opt, optval) in options:
        if opt == "-h":
            usage()
        elif opt == "-d":
            Prefs.DEBUG = True
        elif opt == "-v":
            Prefs.VERBOSE += 1
        elif opt == "-s":
            Prefs.STATS = True
        elif opt == "-j":
            Prefs.JSON = True
        elif opt == "-t":
            Prefs.TCPONLY = True
        elif opt == "-e":
            Prefs.PAYLOAD = get_int(opt, optval, 512, 65535)
        elif opt == "-r":
            Prefs.RESOLVERS.append(optval)
        elif opt == "--sname":
            Prefs.SERVER_NAME = optval
        elif opt == "--cert":
            Prefs.CERTFILE = optval
        elif opt == "--key":
            Prefs.KEYFILE = optval
        elif opt == "--CAfile":
            Prefs.CAFILE = optval
        elif opt == "--clientauth":
            Prefs.CLIENTAUTH = True
        elif opt == "--exttype":
            Prefs.EXTENSION_TYPE = get_int(opt, optval, 0, 65535)
        elif opt == "--strict":
            Prefs.STRICT = True
        elif opt == "--tls13cert":
            Prefs.TLS13_CERTIFICATE = True

    if not args:
        usage("ERROR: no port number specified.")
    elif len(args) > 1:
        usage("ERROR: too many arguments.")

    port = get_int("port", args[0], 1, 65535)

    if Prefs.SERVER_NAME is None:
        Prefs.SERVER_NAME = socket.gethostname()

    return port
