"""
DNSSEC functions: key loading, signature verification, DS matching,
and NSEC/NSEC3 helpers.
"""

import time
import base64
import struct

import dns.name
import dns.rdata
import dns.rdatatype
import dns.rdataclass
import dns.dnssec
from dns.dnssec import Algorithm
from Crypto.PublicKey import RSA, ECC
from Crypto.Signature import pkcs1_15, DSS
from Crypto.Hash import SHA1, SHA256, SHA384, SHA512
import nacl.exceptions
import nacl.signing

from chainlib.prefs import Prefs
from chainlib.rootkey import RootTrustAnchors
from chainlib.exception import ValidationFailure
from chainlib.stats import stats
from chainlib.utils import to_wire


# Tolerable clock skew for signatures in seconds
CLOCK_SKEW = 300

# Supported signing algorithms -> digest applied to the signed data
# (None: the algorithm signs the data itself)
HASHFUNC = {
    Algorithm.RSASHA1: SHA1,
    Algorithm.RSASHA1NSEC3SHA1: SHA1,
    Algorithm.RSASHA256: SHA256,
    Algorithm.RSASHA512: SHA512,
    Algorithm.ECDSAP256SHA256: SHA256,
    Algorithm.ECDSAP384SHA384: SHA384,
    Algorithm.ED25519: None,
}

# DS (Delegation Signer) Digest Algorithms
DS_ALG = {
    1: SHA1,
    2: SHA256,
    4: SHA384,
}

# ECDSA curve name and coordinate length
ECC_CURVES = {
    Algorithm.ECDSAP256SHA256: ('p256', 32),
    Algorithm.ECDSAP384SHA384: ('p384', 48),
}


def algorithm_text(algnum):
    """Mnemonic for DNSSEC algorithm number"""
    return dns.dnssec.algorithm_to_text(algnum)


class KeyCache:
    """
    Authenticated DNSSEC keys, by zone name. One instance per
    validating resolution context.
    """

    def __init__(self):
        self.data = {}

    def install(self, zone, keylist):
        """Remember the (non revoked) keys of an authenticated zone"""
        self.data[zone] = [k for k in keylist if not k.revoke_flag]

    def has_key(self, zone):
        return zone in self.data

    def get_keys(self, zone):
        return self.data.get(zone)

    def reset(self):
        self.data.clear()

    def dump(self):
        """Print cache contents"""
        print("#### Key Cache dump")
        for zone, keylist in self.data.items():
            print("ZONE: {}".format(zone))
            for key in keylist:
                print("      {}".format(key))
        print("#### END: Key Cache dump")


def rsa_public_key(algnum, keydata):
    """RSA public key from RFC 3110 key data"""
    if keydata[0] == 0:
        elen, = struct.unpack('!H', keydata[1:3])
        offset = 3
    else:
        elen = keydata[0]
        offset = 1
    exponent = int.from_bytes(keydata[offset:offset+elen], byteorder='big')
    modulus = int.from_bytes(keydata[offset+elen:], byteorder='big')
    return RSA.construct((modulus, exponent))


def ecc_public_key(algnum, keydata):
    """ECDSA public key from RFC 6605 key data (x | y)"""
    curve, point_length = ECC_CURVES[algnum]
    if len(keydata) != 2 * point_length:
        raise ValueError("bad ECDSA key length {}".format(len(keydata)))
    return ECC.construct(
        curve=curve,
        point_x=int.from_bytes(keydata[:point_length], byteorder='big'),
        point_y=int.from_bytes(keydata[point_length:], byteorder='big'))


def eddsa_public_key(algnum, keydata):
    return nacl.signing.VerifyKey(keydata)


PUBLIC_KEY_LOADERS = {
    Algorithm.RSASHA1: rsa_public_key,
    Algorithm.RSASHA1NSEC3SHA1: rsa_public_key,
    Algorithm.RSASHA256: rsa_public_key,
    Algorithm.RSASHA512: rsa_public_key,
    Algorithm.ECDSAP256SHA256: ecc_public_key,
    Algorithm.ECDSAP384SHA384: ecc_public_key,
    Algorithm.ED25519: eddsa_public_key,
}


class DNSKEY:
    """A DNSKEY record of a zone, with its parsed public key"""

    def __init__(self, rrname, rr):
        self.name = rrname
        self.rdata = rr
        self.flags = rr.flags
        self.protocol = rr.protocol
        self.algorithm = rr.algorithm
        self.rawkey = rr.key
        self.keytag = dns.dnssec.key_id(rr)
        self.zone_flag = bool(self.flags & 0x0100)
        self.revoke_flag = bool(self.flags & 0x0080)
        self.sep_flag = bool(self.flags & 0x0001)
        loader = PUBLIC_KEY_LOADERS.get(self.algorithm)
        self.key = loader(self.algorithm, rr.key) if loader else None

    def supported(self):
        return self.key is not None

    def size(self):
        """Key size in bits"""
        if isinstance(self.key, RSA.RsaKey):
            return self.key.n.bit_length()
        return len(self.rawkey) * 8

    def __repr__(self):
        return "DNSKEY: {} {} {} {} ({}) {}-bits{}{}".format(
            self.name, self.flags, self.keytag,
            algorithm_text(self.algorithm), self.algorithm, self.size(),
            " SEP" if self.sep_flag else "",
            " REV" if self.revoke_flag else "")


def load_keys(rrset):
    """DNSKEY objects for each record of the DNSKEY RRset"""
    try:
        return [DNSKEY(rrset.name, rr) for rr in rrset]
    except (ValueError, TypeError, IndexError,
            nacl.exceptions.CryptoError) as e:
        raise ValidationFailure("Malformed DNSKEY at {}: {}".format(
            rrset.name, e))


def get_trust_anchors():
    """Root trust anchors, as DS rdata"""
    return [dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.DS, text)
            for text in RootTrustAnchors]


def signed_data(rrset, rrsig):
    """
    The data covered by an RRSIG (RFC 4034, Section 3.1.8.1):
    RRSIG rdata without the signature, followed by the RRs of the set
    in canonical form and order, with the owner name replaced by the
    wildcard it was expanded from, if any, and the TTL by the original
    TTL of the signature.
    """

    rrname = rrset.name
    if rrsig.labels < len(rrname) - 1:
        rrname = dns.name.Name((b'*',) + rrname.labels[-(rrsig.labels+1):])
    rr_prefix = rrname.to_digestable() + struct.pack(
        '!HHI', rrset.rdtype, rrset.rdclass, rrsig.original_ttl)

    parts = [to_wire(rrsig)[0:18], rrsig.signer.to_digestable()]
    for rdata in sorted(rr.to_digestable() for rr in rrset):
        parts.append(rr_prefix + struct.pack('!H', len(rdata)) + rdata)
    return b''.join(parts)


def verify_signature(key, rrsig, data):
    """
    Verify the signature in rrsig over data with the DNSKEY object key.
    Raises ValidationFailure if it does not verify.
    """
    hashfunc = HASHFUNC[rrsig.algorithm]
    try:
        if isinstance(key.key, RSA.RsaKey):
            pkcs1_15.new(key.key).verify(hashfunc.new(data), rrsig.signature)
        elif isinstance(key.key, ECC.EccKey):
            DSS.new(key.key, 'fips-186-3').verify(hashfunc.new(data),
                                                  rrsig.signature)
        else:
            key.key.verify(data, rrsig.signature)
    except (ValueError, TypeError, nacl.exceptions.BadSignatureError) as e:
        raise ValidationFailure("Bad signature by key {}: {}".format(
            key.keytag, e))


def check_validity_period(rrsig, now=None, skew=CLOCK_SKEW):
    """Is now within the signature's inception and expiration times?"""
    if now is None:
        now = int(time.time() + 0.5)
    if now < rrsig.inception - skew:
        raise ValidationFailure("Signature inception in future: {}".format(
            time.asctime(time.gmtime(rrsig.inception))))
    if now > rrsig.expiration + skew:
        raise ValidationFailure("Signature has expired: {}".format(
            time.asctime(time.gmtime(rrsig.expiration))))


def verify_rrsig(rrset, rrsig, keys):
    """
    Verify one RRSIG over rrset against the candidate keys. Returns
    2 lists: keys that verified it, and (key, error) tuples for keys
    that did not.
    """

    verified = []
    failed = []
    data = signed_data(rrset, rrsig)

    for key in keys:
        if (key.keytag != rrsig.key_tag or
                key.algorithm != rrsig.algorithm or not key.supported()):
            continue
        try:
            verify_signature(key, rrsig, data)
            check_validity_period(rrsig)
        except ValidationFailure as e:
            failed.append((key, e))
        else:
            stats.cnt_sigverify += 1
            verified.append(key)

    return verified, failed


def check_self_signature(rrset, rrsigs):
    """
    Check the self signature of a DNSKEY RRset. Returns the list of
    DNSKEY objects in the set, and the subset of them that sign the
    set. Raises ValidationFailure if no key does.
    """

    keys = load_keys(rrset)
    verified = []
    failed = []
    for rrsig in rrsigs:
        if rrsig.signer != rrset.name or rrsig.algorithm not in HASHFUNC:
            continue
        v, f = verify_rrsig(rrset, rrsig, keys)
        verified += v
        failed += f

    if not verified:
        raise ValidationFailure(
            "DNSKEY {} self signature failed to validate: {}".format(
                rrset.name, failed))
    return keys, verified


def validate_all(rrset, rrsigs, key_cache):
    """
    Verify the signatures (with supported algorithms) over rrset with
    the authenticated keys of their signers. Returns the lists of keys
    that verified, and of (key, error) tuples that failed.
    """

    verified = []
    failed = []
    for rrsig in rrsigs:
        if rrsig.algorithm not in HASHFUNC:
            continue
        keylist = key_cache.get_keys(rrsig.signer)
        if keylist is None:
            raise ValidationFailure("No DNSSEC keys found for {}".format(
                rrsig.signer))
        v, f = verify_rrsig(rrset, rrsig, keylist)
        verified += v
        failed += f
    return verified, failed


def ds_rrset_matches_dnskey(ds_list, dnskey):
    """
    Does one of the DS records carry the digest of this DNSKEY?
    digest = digest_algorithm(DNSKEY owner name | DNSKEY RDATA)
    """

    preimage = dnskey.name.to_digestable() + dnskey.rdata.to_digestable()
    for ds in ds_list:
        if (ds.key_tag, ds.algorithm) != (dnskey.keytag, dnskey.algorithm):
            continue
        if ds.digest_type not in DS_ALG:
            continue
        if DS_ALG[ds.digest_type].new(data=preimage).digest() == ds.digest:
            return True
    return False


def supported_algorithm_present(ds_list):
    """Is there a DS record with a supported algorithm and digest type?"""
    return any(ds.algorithm in HASHFUNC and ds.digest_type in DS_ALG
               for ds in ds_list)


b32_to_ext_hex = bytes.maketrans(b'ABCDEFGHIJKLMNOPQRSTUVWXYZ234567',
                                 b'0123456789ABCDEFGHIJKLMNOPQRSTUV')


def nsec3hash(name, algnum, salt, iterations):
    """NSEC3 hash of name, as an (upper case) base32hex label"""
    if iterations < 0:
        raise ValidationFailure("NSEC3 hash iterations must be >= 0")
    if iterations > Prefs.N3_HASHLIMIT:
        raise ValidationFailure(
            "NSEC3 hash iterations {} exceed limit {}".format(
                iterations, Prefs.N3_HASHLIMIT))
    try:
        return dns.dnssec.nsec3_hash(name, salt, iterations, algnum)
    except ValueError as e:
        raise ValidationFailure("NSEC3 hash of {} failed: {}".format(name, e))


def get_hashed_owner(qname, zonename, nsec3_rdata):
    """NSEC3 owner name that qname hashes to, with these NSEC3 parameters"""
    label = nsec3hash(qname, nsec3_rdata.algorithm, nsec3_rdata.salt,
                      nsec3_rdata.iterations)
    return dns.name.Name((label,) + zonename.labels)


def type_in_bitmap(rrtype, nsec_rr):
    """Is RR type present in NSEC/NSEC3 RR type bitmap?"""
    window_needed, offset = divmod(rrtype, 256)
    octet, bit = divmod(offset, 8)
    for window, bitmap in nsec_rr.windows:
        if window == window_needed:
            return octet < len(bitmap) and bool(bitmap[octet] & (0x80 >> bit))
    return False


def in_span(name, owner, next_name):
    """
    Is name strictly between owner and next_name in canonical order?
    The last span of a zone wraps around to its start.
    """
    name = name.canonicalize()
    owner = owner.canonicalize()
    next_name = next_name.canonicalize()
    if next_name <= owner:
        return name > owner or name < next_name
    return owner < name < next_name


def nsec_covers_name(nsec_rrset, name):
    """Does NSEC RR cover the given name?"""
    return in_span(name, nsec_rrset.name, nsec_rrset[0].next)


def nsec3_covers_name(nsec_rrset, name, zonename):
    """Does NSEC3 RR cover the given (hashed) name?"""
    next_label = base64.b32encode(nsec_rrset[0].next).translate(
        b32_to_ext_hex).decode()
    return in_span(name, nsec_rrset.name,
                   dns.name.Name((next_label,) + zonename.labels))
