"""
Common globals for the package.
"""


class Prefs:
    """Preferences"""
    DEBUG = False                    # -d: debug output (chain hexdump etc)
    VERBOSE = 0                      # -v: Verbosity level (0 default)
    STATS = False                    # -s: Print statistics
    JSON = False                     # -j: JSON encoded chain response
    TCPONLY = False                  # -t: Use TCP only
    PAYLOAD = 1460                   # -e: EDNS payload size
    RESOLVERS = []                   # -r: upstream resolvers (or system)
    SERVER_NAME = None               # --sname: default is hostname
    CERTFILE = "server.crt"          # --cert: server certificate (PEM)
    KEYFILE = "server.key"           # --key: server private key (PEM)
    CAFILE = None                    # --CAfile: CA file for client auth
    CLIENTAUTH = False               # --clientauth: require client certs
    EXTENSION_TYPE = 53              # --exttype: dnssec_chain extension
    STRICT = False                   # --strict: refuse to run without chain
    TLS13_CERTIFICATE = False        # --tls13cert: also in TLS 1.3 Certificate
    TIMEOUT = 3                      # Query timeout in seconds
    RETRIES = 2                      # Number of retries per server
    MAX_QUERY = 100                  # Max number of queries per chain
    N3_HASHLIMIT = 512               # Upper bound for NSEC3 hash iterations
    HANDSHAKE_TIMEOUT = 10           # TLS handshake socket timeout
    LISTEN_BACKLOG = 5               # listen() backlog
    VERIFY_DEPTH = 10                # client cert verification depth
