"""
Minimal binding to the system OpenSSL libssl, for the server side
operations needed here: context setup, serverinfo (static TLS extension
data) registration, and handshakes on already accepted sockets.

Python's ssl module has no interface to serverinfo, hence ctypes.
"""

import ctypes
import ctypes.util
import socket
import struct

from chainlib.exception import TLSError


TLS1_2_VERSION = 0x0303
SSL_CTRL_SET_MIN_PROTO_VERSION = 123
SSL_FILETYPE_PEM = 1
SSL_VERIFY_NONE = 0x00
SSL_VERIFY_PEER = 0x01
SSL_VERIFY_FAIL_IF_NO_PEER_CERT = 0x02

# serverinfo version 2 carries a 4-octet extension context per entry
SSL_SERVERINFOV2 = 2
SSL_EXT_TLS1_2_AND_BELOW_ONLY = 0x0004
SSL_EXT_IGNORE_ON_RESUMPTION = 0x0010
SSL_EXT_CLIENT_HELLO = 0x0080
SSL_EXT_TLS1_2_SERVER_HELLO = 0x0100
SSL_EXT_TLS1_3_CERTIFICATE = 0x1000

# ServerHello of TLS 1.2 and below only: the context OpenSSL gives
# serverinfo version 1 data, and the one its clients expect.
SERVERINFO_CONTEXT = (SSL_EXT_TLS1_2_AND_BELOW_ONLY |
                      SSL_EXT_IGNORE_ON_RESUMPTION |
                      SSL_EXT_CLIENT_HELLO | SSL_EXT_TLS1_2_SERVER_HELLO)

# Also in the TLS 1.3 Certificate message (RFC 9102 layout)
SERVERINFO_CONTEXT_TLS13 = (SSL_EXT_CLIENT_HELLO |
                            SSL_EXT_TLS1_2_SERVER_HELLO |
                            SSL_EXT_TLS1_3_CERTIFICATE)

SSL_ERROR_TEXT = {
    0: "SSL_ERROR_NONE",
    1: "SSL_ERROR_SSL",
    2: "SSL_ERROR_WANT_READ",
    3: "SSL_ERROR_WANT_WRITE",
    5: "SSL_ERROR_SYSCALL",
    6: "SSL_ERROR_ZERO_RETURN",
}

_LIBS = {}


def _bind(lib, name, restype, argtypes):
    func = getattr(lib, name)
    func.restype = restype
    func.argtypes = argtypes
    return func


def load_libraries():
    """
    Locate and load libssl and libcrypto, and declare the function
    signatures used. Returns (libssl, libcrypto). Raises TLSError if
    the libraries are unavailable.
    """

    if _LIBS:
        return _LIBS['ssl'], _LIBS['crypto']

    ssl_path = ctypes.util.find_library('ssl')
    crypto_path = ctypes.util.find_library('crypto')
    if not ssl_path or not crypto_path:
        raise TLSError("OpenSSL libraries (libssl, libcrypto) not found")
    try:
        libssl = ctypes.CDLL(ssl_path)
        libcrypto = ctypes.CDLL(crypto_path)
    except OSError as e:
        raise TLSError("Unable to load OpenSSL: {}".format(e))

    vp, cp, c_int = ctypes.c_void_p, ctypes.c_char_p, ctypes.c_int
    try:
        _bind(libssl, 'TLS_server_method', vp, [])
        _bind(libssl, 'SSL_CTX_new', vp, [vp])
        _bind(libssl, 'SSL_CTX_free', None, [vp])
        _bind(libssl, 'SSL_CTX_ctrl', ctypes.c_long,
              [vp, c_int, ctypes.c_long, vp])
        _bind(libssl, 'SSL_CTX_use_certificate_chain_file', c_int, [vp, cp])
        _bind(libssl, 'SSL_CTX_use_PrivateKey_file', c_int, [vp, cp, c_int])
        _bind(libssl, 'SSL_CTX_check_private_key', c_int, [vp])
        _bind(libssl, 'SSL_CTX_load_verify_locations', c_int, [vp, cp, cp])
        _bind(libssl, 'SSL_CTX_set_default_verify_paths', c_int, [vp])
        _bind(libssl, 'SSL_CTX_set_verify', None, [vp, c_int, vp])
        _bind(libssl, 'SSL_CTX_set_verify_depth', None, [vp, c_int])
        _bind(libssl, 'SSL_CTX_use_serverinfo_ex', c_int,
              [vp, ctypes.c_uint, cp, ctypes.c_size_t])
        _bind(libssl, 'SSL_CTX_set_session_id_context', c_int,
              [vp, cp, ctypes.c_uint])
        _bind(libssl, 'SSL_new', vp, [vp])
        _bind(libssl, 'SSL_free', None, [vp])
        _bind(libssl, 'SSL_set_fd', c_int, [vp, c_int])
        _bind(libssl, 'SSL_accept', c_int, [vp])
        _bind(libssl, 'SSL_get_error', c_int, [vp, c_int])
        _bind(libssl, 'SSL_shutdown', c_int, [vp])
        _bind(libssl, 'SSL_get_version', cp, [vp])
        _bind(libssl, 'SSL_get_current_cipher', vp, [vp])
        _bind(libssl, 'SSL_CIPHER_get_name', cp, [vp])
        _bind(libcrypto, 'ERR_get_error', ctypes.c_ulong, [])
        _bind(libcrypto, 'ERR_error_string_n', None,
              [ctypes.c_ulong, cp, ctypes.c_size_t])
        _bind(libcrypto, 'ERR_clear_error', None, [])
    except AttributeError as e:
        raise TLSError("Unsupported OpenSSL version: {}".format(e))

    _LIBS['ssl'] = libssl
    _LIBS['crypto'] = libcrypto
    return libssl, libcrypto


def error_text(libcrypto, message):
    """
    Return message followed by the contents of the (thread local)
    OpenSSL error queue, which is emptied.
    """
    errors = []
    buf = ctypes.create_string_buffer(256)
    while True:
        code = libcrypto.ERR_get_error()
        if code == 0:
            break
        libcrypto.ERR_error_string_n(code, buf, len(buf))
        errors.append(buf.value.decode(errors='replace'))
    if errors:
        return "{}: {}".format(message, "; ".join(errors))
    return message


def serverinfo_v2(extension_data, context=SERVERINFO_CONTEXT):
    """
    serverinfo (version 2) data for one extension: the 4-octet
    extension context followed by the extension type, length and data.
    """
    return struct.pack('!I', context) + bytes(extension_data)


def set_socket_timeout(sock, seconds):
    """
    Bound blocking reads and writes on the socket at the OS level; the
    socket stays in blocking mode, as libssl requires here.
    """
    timeval = struct.pack('ll', int(seconds), 0)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVTIMEO, timeval)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDTIMEO, timeval)


class TLSContext:
    """Server side TLS context (SSL_CTX)"""

    def __init__(self):
        self.libssl, self.libcrypto = load_libraries()
        self.libcrypto.ERR_clear_error()
        self.ctx = self.libssl.SSL_CTX_new(self.libssl.TLS_server_method())
        if not self.ctx:
            raise TLSError(self._error("SSL_CTX_new() failed"))
        self.serverinfo_types = set()
        self.cert_loaded = False

    def _error(self, message):
        return error_text(self.libcrypto, message)

    def set_min_version(self, version=TLS1_2_VERSION):
        """Set minimum protocol version"""
        if self.libssl.SSL_CTX_ctrl(self.ctx, SSL_CTRL_SET_MIN_PROTO_VERSION,
                                    version, None) != 1:
            raise TLSError(self._error(
                "Failed to set minimum protocol version"))

    def load_verify_locations(self, cafile=None):
        """Load CA store from cafile, or the default verify paths"""
        if cafile:
            rc = self.libssl.SSL_CTX_load_verify_locations(
                self.ctx, cafile.encode(), None)
            if rc != 1:
                raise TLSError(self._error(
                    "Failed to load certificate authority store: {}".format(
                        cafile)))
        elif self.libssl.SSL_CTX_set_default_verify_paths(self.ctx) != 1:
            raise TLSError(self._error(
                "Failed to load default certificate authorities"))

    def set_verify(self, client_auth=False, depth=10):
        """Set peer (client) certificate verification mode and depth"""
        if client_auth:
            mode = SSL_VERIFY_PEER | SSL_VERIFY_FAIL_IF_NO_PEER_CERT
        else:
            mode = SSL_VERIFY_NONE
        self.libssl.SSL_CTX_set_verify(self.ctx, mode, None)
        self.libssl.SSL_CTX_set_verify_depth(self.ctx, depth)

    def load_cert_chain(self, certfile, keyfile):
        """Load server certificate chain and private key (PEM)"""
        if self.libssl.SSL_CTX_use_certificate_chain_file(
                self.ctx, certfile.encode()) != 1:
            raise TLSError(self._error(
                "Failed to load server certificate: {}".format(certfile)))
        if self.libssl.SSL_CTX_use_PrivateKey_file(
                self.ctx, keyfile.encode(), SSL_FILETYPE_PEM) != 1:
            raise TLSError(self._error(
                "Failed to load server private key: {}".format(keyfile)))
        if self.libssl.SSL_CTX_check_private_key(self.ctx) != 1:
            raise TLSError(self._error(
                "Private key does not match certificate"))
        self.cert_loaded = True

    def set_session_id_context(self, sid_ctx):
        if self.libssl.SSL_CTX_set_session_id_context(
                self.ctx, sid_ctx, len(sid_ctx)) != 1:
            raise TLSError(self._error("Failed to set session id context"))

    def add_serverinfo(self, extension_data, tls13_certificate=False):
        """
        Register extension data (type, length, data) to be returned to
        clients that include the same extension type in their hello.
        By default it is sent in TLS 1.2 (and below) ServerHellos only;
        with tls13_certificate it also goes in the TLS 1.3 Certificate
        message. A certificate must already be loaded, and each
        extension type may be registered only once.
        """
        data = bytes(extension_data)
        if len(data) < 4:
            raise TLSError("Extension data too short: {} octets".format(
                len(data)))
        ext_type, = struct.unpack('!H', data[0:2])
        if ext_type in self.serverinfo_types:
            raise TLSError("Extension type {} already registered".format(
                ext_type))
        if not self.cert_loaded:
            raise TLSError("serverinfo requires a loaded certificate")
        if tls13_certificate:
            serverinfo = serverinfo_v2(data, SERVERINFO_CONTEXT_TLS13)
        else:
            serverinfo = serverinfo_v2(data)
        if self.libssl.SSL_CTX_use_serverinfo_ex(
                self.ctx, SSL_SERVERINFOV2, serverinfo, len(serverinfo)) != 1:
            raise TLSError(self._error(
                "Failed to load extension type {} data".format(ext_type)))
        self.serverinfo_types.add(ext_type)

    def new_session(self, sock):
        """Return a TLSSession on an accepted (blocking) socket"""
        return TLSSession(self, sock)

    def free(self):
        if self.ctx:
            self.libssl.SSL_CTX_free(self.ctx)
            self.ctx = None

    def __repr__(self):
        return "<TLSContext: extensions={}>".format(
            sorted(self.serverinfo_types))


class TLSSession:
    """Server side TLS connection (SSL) bound to a socket"""

    def __init__(self, context, sock):
        self.libssl = context.libssl
        self.libcrypto = context.libcrypto
        self.libcrypto.ERR_clear_error()
        self.ssl = self.libssl.SSL_new(context.ctx)
        if not self.ssl:
            raise TLSError(error_text(self.libcrypto, "SSL_new() failed"))
        if self.libssl.SSL_set_fd(self.ssl, sock.fileno()) != 1:
            self.free()
            raise TLSError(error_text(self.libcrypto, "SSL_set_fd() failed"))

    def accept(self):
        """Perform the server side handshake; raises TLSError on failure"""
        rc = self.libssl.SSL_accept(self.ssl)
        if rc != 1:
            code = self.libssl.SSL_get_error(self.ssl, rc)
            raise TLSError(error_text(
                self.libcrypto, "TLS handshake failed ({})".format(
                    SSL_ERROR_TEXT.get(code, code))))

    def version(self):
        """Negotiated protocol version"""
        return self.libssl.SSL_get_version(self.ssl).decode()

    def cipher(self):
        """Negotiated cipher suite name"""
        cipher = self.libssl.SSL_get_current_cipher(self.ssl)
        if not cipher:
            return None
        return self.libssl.SSL_CIPHER_get_name(cipher).decode()

    def shutdown(self):
        """Send close_notify; we don't wait for the peer's"""
        self.libssl.SSL_shutdown(self.ssl)
        self.libcrypto.ERR_clear_error()

    def free(self):
        if self.ssl:
            self.libssl.SSL_free(self.ssl)
            self.ssl = None
