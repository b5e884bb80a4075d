#!/usr/bin/env python3

"""
Unit tests for chainserver
"""

import io
import os
import socket
import ssl
import shutil
import tempfile
import threading
import unittest
import datetime
import contextlib
import subprocess
import base64
import re
from unittest import mock
from types import SimpleNamespace

import dns.dnssec
import dns.message
import dns.name
import dns.rdata
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from chainlib.prefs import Prefs
from chainlib.exception import (ContextError, TransportError, NoNameError,
                                NoDataError, QueryTimeoutError, InsecureError,
                                BogusError, UnknownStatusError, EncodingError,
                                ChainOverflowError, ValidationFailure,
                                TLSError)
from chainlib.ledger import WireRecord, Ledger
from chainlib.extension import encode, ChainBlob, DNSSEC_CHAIN_EXT_TYPE
from chainlib.response import (Response, Reply, RESPSTATUS_GOOD,
                               RESPSTATUS_NO_NAME, RESPSTATUS_ALL_TIMEOUT,
                               RESPSTATUS_NO_SECURE_ANSWERS,
                               RESPSTATUS_ALL_BOGUS_ANSWERS)
from chainlib.chain import resolve_chain, CHAIN_EXTENSIONS
from chainlib.context import Context
from chainlib.dnssec import (KeyCache, load_keys, check_self_signature,
                             validate_all, ds_rrset_matches_dnskey,
                             nsec3hash, type_in_bitmap, nsec_covers_name)
from chainlib.zone import Zone
from chainlib.lookup import authenticate_no_ds, get_rrset_dict
from chainlib.options import process_args
from chainlib.tls import (load_libraries, serverinfo_v2,
                          SERVERINFO_CONTEXT_TLS13)
from chainlib.utils import to_wire
from chainlib.server import (tlsa_name, get_chain_blob, make_tls_context,
                             ChainServer)


def quiet():
    """Swallow diagnostic output of the code under test"""
    return contextlib.redirect_stdout(io.StringIO())


def quiet_stderr():
    return contextlib.redirect_stderr(io.StringIO())


#
# Fake validating resolution context: returns a canned response, and
# "converts" records that are already bytes.
#

class FakeContext:

    def __init__(self, extensions, response, bad_record=None):
        self.extensions = extensions
        self.response = response
        self.bad_record = bad_record
        self.queries = []
        self.destroyed = False

    def general(self, qname, qtype):
        self.queries.append((qname, qtype))
        return self.response

    def rr_to_wire(self, rr):
        if rr == self.bad_record:
            raise EncodingError("cannot convert {}".format(rr))
        return rr

    def destroy(self):
        self.destroyed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.destroy()
        return False


def fake_factory(status=RESPSTATUS_GOOD, answers=None, chain=None,
                 bad_record=None):
    """Return a context factory, which remembers the contexts it made"""

    response = Response(dns.name.from_text("_443._tcp.example.test."),
                        dns.rdatatype.TLSA, status=status)
    response.add_reply(Reply(answer=list(answers or [])))
    response.validation_chain = list(chain or [])
    created = []

    def factory(extensions):
        context = FakeContext(extensions, response, bad_record=bad_record)
        created.append(context)
        return context

    factory.created = created
    return factory


#
# Status -> expected exception
#
STATUS_VECTORS = [
    (RESPSTATUS_NO_NAME, NoNameError),
    (RESPSTATUS_ALL_TIMEOUT, QueryTimeoutError),
    (RESPSTATUS_NO_SECURE_ANSWERS, InsecureError),
    (RESPSTATUS_ALL_BOGUS_ANSWERS, BogusError),
    (999, UnknownStatusError),
]


class TestLedger(unittest.TestCase):

    def test_insert_order_and_size(self):
        ledger = Ledger()
        records = [WireRecord(b'\x01' * n) for n in (4, 1, 7, 1)]
        for record in records:
            ledger.insert(record)
        self.assertEqual(ledger.snapshot(), tuple(records))
        self.assertEqual(ledger.total_size(), 13)
        self.assertEqual(len(ledger), 4)

    def test_duplicates_kept(self):
        ledger = Ledger()
        ledger.insert(WireRecord(b'\x05\x06'))
        ledger.insert(WireRecord(b'\x05\x06'))
        self.assertEqual(len(ledger), 2)
        self.assertEqual(ledger.total_size(), 4)

    def test_release(self):
        ledger = Ledger()
        ledger.insert(WireRecord(b'\x00\x01\x02'))
        ledger.release()
        self.assertEqual(len(ledger), 0)
        self.assertEqual(ledger.total_size(), 0)
        self.assertEqual(list(ledger), [])


class TestEncoder(unittest.TestCase):

    def test_layout(self):
        ledger = Ledger()
        ledger.insert(WireRecord(b'\x03\x04\xaa\xbb'))
        ledger.insert(WireRecord(b'\x01\x02'))
        blob = encode(ledger.snapshot())
        self.assertEqual(bytes(blob),
                         b'\x00\x35\x00\x06\x03\x04\xaa\xbb\x01\x02')
        self.assertEqual(blob.extension_type, DNSSEC_CHAIN_EXT_TYPE)
        self.assertEqual(blob.payload_length, 6)
        self.assertEqual(len(blob.payload), blob.payload_length)
        self.assertEqual(len(blob), 10)

    def test_idempotent(self):
        snapshot = (WireRecord(b'\x00' * 20), WireRecord(b'\xff' * 3))
        self.assertEqual(bytes(encode(snapshot)), bytes(encode(snapshot)))
        self.assertEqual(encode(snapshot), encode(snapshot))

    def test_empty(self):
        self.assertEqual(bytes(encode(())), b'\x00\x35\x00\x00')

    def test_other_extension_type(self):
        blob = encode((WireRecord(b'\x01'),), extension_type=0xff01)
        self.assertEqual(bytes(blob), b'\xff\x01\x00\x01\x01')

    def test_bad_extension_type(self):
        with self.assertRaises(EncodingError):
            encode((), extension_type=0x10000)

    def test_size_boundary(self):
        """65535 octets of records fit; 65536 do not"""
        fits = (WireRecord(b'\x00' * 65000), WireRecord(b'\x00' * 535))
        blob = encode(fits)
        self.assertEqual(blob.payload_length, 65535)
        self.assertEqual(bytes(blob)[2:4], b'\xff\xff')
        too_big = fits + (WireRecord(b'\x00'),)
        with self.assertRaises(ChainOverflowError):
            encode(too_big)
        with self.assertRaises(OverflowError):
            encode(too_big)

    def test_blob_hex(self):
        blob = ChainBlob(53, b'\x01\x02')
        self.assertEqual(blob.hex(), "003500020102")


class TestChainResolver(unittest.TestCase):

    def test_good(self):
        """answer records first, then the validation chain, in order"""
        factory = fake_factory(answers=[b'\x03\x04\xaa\xbb'],
                               chain=[b'\x01\x02'])
        ledger = Ledger()
        resolve_chain(ledger, "_443._tcp.example.test", "TLSA",
                      context_factory=factory)
        self.assertEqual([r.data for r in ledger],
                         [b'\x03\x04\xaa\xbb', b'\x01\x02'])
        self.assertEqual(ledger.total_size(), 6)
        blob = encode(ledger.snapshot())
        self.assertEqual(bytes(blob)[0:6], b'\x00\x35\x00\x06\x03\x04')
        self.assertEqual(bytes(blob)[8:], b'\x01\x02')

        context, = factory.created
        self.assertEqual(context.extensions, CHAIN_EXTENSIONS)
        self.assertEqual(context.queries,
                         [("_443._tcp.example.test", "TLSA")])
        self.assertTrue(context.destroyed)

    def test_multiple_replies(self):
        factory = fake_factory(answers=[b'\x0a', b'\x0b'],
                               chain=[b'\x0c', b'\x0d', b'\x0e'])
        ledger = Ledger()
        resolve_chain(ledger, "_443._tcp.example.test", "TLSA",
                      context_factory=factory)
        self.assertEqual(b''.join(r.data for r in ledger),
                         b'\x0a\x0b\x0c\x0d\x0e')

    def test_status_mapping(self):
        """Every non GOOD status fails, leaving the ledger as it was"""
        for status, exc in STATUS_VECTORS:
            with self.subTest(status=status):
                ledger = Ledger()
                ledger.insert(WireRecord(b'\x99'))
                before = ledger.snapshot()
                factory = fake_factory(status=status, answers=[b'\x01\x02'],
                                       chain=[b'\x03'])
                with quiet_stderr():
                    with self.assertRaises(exc):
                        resolve_chain(ledger, "_443._tcp.example.test",
                                      "TLSA", context_factory=factory)
                self.assertEqual(ledger.snapshot(), before)
                self.assertEqual(ledger.total_size(), 1)
                self.assertTrue(factory.created[0].destroyed)

    def test_nodata(self):
        ledger = Ledger()
        with quiet_stderr():
            with self.assertRaises(NoDataError):
                resolve_chain(ledger, "_443._tcp.example.test", "TLSA",
                              context_factory=fake_factory(answers=[]))
        self.assertEqual(len(ledger), 0)

    def test_encoding_failure(self):
        """conversion failure midway through the chain writes nothing"""
        factory = fake_factory(answers=[b'\x01'],
                               chain=[b'\x02', b'\x03', b'\x04'],
                               bad_record=b'\x03')
        ledger = Ledger()
        with self.assertRaises(EncodingError):
            resolve_chain(ledger, "_443._tcp.example.test", "TLSA",
                          context_factory=factory)
        self.assertEqual(len(ledger), 0)
        self.assertEqual(ledger.total_size(), 0)

    def test_context_failure(self):
        def factory(extensions):
            raise ContextError("no resolvers")
        ledger = Ledger()
        with quiet_stderr():
            with self.assertRaises(ContextError):
                resolve_chain(ledger, "_443._tcp.example.test", "TLSA",
                              context_factory=factory)
        self.assertEqual(len(ledger), 0)


class TestContext(unittest.TestCase):

    def test_unknown_extension(self):
        with self.assertRaises(ContextError):
            Context({"dnssec_return_everything": True},
                    upstreams=["192.0.2.1"])

    def test_bad_extension_value(self):
        with self.assertRaises(ContextError):
            Context({"dnssec_return_only_secure": "yes"},
                    upstreams=["192.0.2.1"])

    def test_bad_upstream(self):
        with self.assertRaises(ContextError):
            Context(CHAIN_EXTENSIONS, upstreams=["not-an-address"])

    def test_extensions(self):
        with Context(CHAIN_EXTENSIONS, upstreams=["192.0.2.1",
                                                  "192.0.2.1"]) as context:
            self.assertTrue(context.only_secure)
            self.assertTrue(context.return_chain)
            self.assertEqual(len(context.upstreams), 1)
        self.assertIsNone(context.upstreams)

    def test_bad_query(self):
        with Context(CHAIN_EXTENSIONS, upstreams=["192.0.2.1"]) as context:
            with self.assertRaises(TransportError):
                context.general("_443._tcp.example.test", "ANY")
            with self.assertRaises(TransportError):
                context.general("_443._tcp.example.test", "NOSUCHTYPE")

    def test_destroyed(self):
        context = Context(CHAIN_EXTENSIONS, upstreams=["192.0.2.1"])
        context.destroy()
        with self.assertRaises(TransportError):
            context.general("_443._tcp.example.test", "TLSA")

    def test_rr_to_wire(self):
        rrset = dns.rrset.from_text("_443._tcp.example.test.", 300, "IN",
                                    "TLSA", "3 1 1 0102030405")
        context = Context(CHAIN_EXTENSIONS, upstreams=["192.0.2.1"])
        wire = context.rr_to_wire(rrset)
        # owner (24) + type, class, ttl, rdlength (10) + rdata (3+5)
        self.assertEqual(len(wire), 24 + 10 + 8)
        self.assertTrue(wire.endswith(b'\x03\x01\x01\x01\x02\x03\x04\x05'))
        with self.assertRaises(EncodingError):
            context.rr_to_wire(object())


#
# DNSSEC test data: zones signed here with dnspython's signer
#
ALGORITHMS = [
    (dns.dnssec.Algorithm.ED25519,
     ed25519.Ed25519PrivateKey.generate),
    (dns.dnssec.Algorithm.ECDSAP256SHA256,
     lambda: ec.generate_private_key(ec.SECP256R1())),
    (dns.dnssec.Algorithm.RSASHA256,
     lambda: rsa.generate_private_key(public_exponent=65537, key_size=2048)),
]


class SignedZone:
    """A zone with one KSK/ZSK, able to sign RRsets"""

    def __init__(self, name, algorithm, keygen):
        self.name = dns.name.from_text(name)
        self.private_key = keygen()
        self.dnskey = dns.dnssec.make_dnskey(self.private_key.public_key(),
                                             algorithm, flags=257)
        self.dnskey_rrset = dns.rrset.from_rdata(self.name, 3600, self.dnskey)
        self.dnskey_rrsigs = self.sign(self.dnskey_rrset)

    def sign(self, rrset):
        rrsig = dns.dnssec.sign(rrset, self.private_key, self.name,
                                self.dnskey, lifetime=3600)
        return dns.rrset.from_rdata(rrset.name, rrset.ttl, rrsig)

    def key_cache(self):
        key_cache = KeyCache()
        key_cache.install(self.name, load_keys(self.dnskey_rrset))
        return key_cache


class TestDNSSEC(unittest.TestCase):

    def test_signatures(self):
        for algorithm, keygen in ALGORITHMS:
            with self.subTest(algorithm=algorithm):
                zone = SignedZone("example.test.", algorithm, keygen)
                keys, sigkeys = check_self_signature(zone.dnskey_rrset,
                                                     zone.dnskey_rrsigs)
                self.assertEqual(len(keys), 1)
                self.assertEqual(sigkeys, keys)
                self.assertTrue(keys[0].zone_flag)
                self.assertTrue(keys[0].sep_flag)

                ds = dns.dnssec.make_ds(zone.name, zone.dnskey, "SHA256")
                self.assertTrue(ds_rrset_matches_dnskey([ds], keys[0]))

                rrset = dns.rrset.from_text("_443._tcp.example.test.", 300,
                                            "IN", "TLSA", "3 1 1 0a0b0c0d")
                rrsigs = zone.sign(rrset)
                verified, failed = validate_all(rrset, rrsigs,
                                                zone.key_cache())
                self.assertEqual(len(verified), 1)
                self.assertEqual(failed, [])

                forged = dns.rrset.from_text("_443._tcp.example.test.", 300,
                                             "IN", "TLSA", "3 1 1 0a0b0c0e")
                verified, failed = validate_all(forged, rrsigs,
                                                zone.key_cache())
                self.assertEqual(verified, [])
                self.assertEqual(len(failed), 1)

    def test_ds_mismatch(self):
        zone1 = SignedZone("example.test.", *ALGORITHMS[0])
        zone2 = SignedZone("example.test.", *ALGORITHMS[0])
        ds = dns.dnssec.make_ds(zone2.name, zone2.dnskey, "SHA256")
        keys = load_keys(zone1.dnskey_rrset)
        self.assertFalse(ds_rrset_matches_dnskey([ds], keys[0]))

    def test_missing_keys(self):
        zone = SignedZone("example.test.", *ALGORITHMS[0])
        rrset = dns.rrset.from_text("www.example.test.", 300, "IN", "A",
                                    "192.0.2.1")
        with self.assertRaises(ValidationFailure):
            validate_all(rrset, zone.sign(rrset), KeyCache())

    def test_nsec3hash(self):
        """Test vectors from RFC 5155, Appendix A"""
        salt = bytes.fromhex("aabbccdd")
        for name, expected in [("example.", "0p9mhaveqvm6t7vbl5lop2u3t2rp3tom"),
                               ("a.example.", "35mthgpgcu1qg68fab165klnsnk3dpvl")]:
            with self.subTest(name=name):
                self.assertEqual(
                    nsec3hash(dns.name.from_text(name), 1, salt, 12).lower(),
                    expected)

    def test_nsec3hash_limit(self):
        name = dns.name.from_text("example.")
        nsec3hash(name, 1, b'', Prefs.N3_HASHLIMIT)
        for iterations in (-1, Prefs.N3_HASHLIMIT + 1):
            with self.subTest(iterations=iterations):
                with self.assertRaises(ValidationFailure):
                    nsec3hash(name, 1, b'', iterations)

    def test_type_bitmap(self):
        nsec = dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.NSEC,
                                   "c.example.test. NS RRSIG NSEC")
        self.assertTrue(type_in_bitmap(dns.rdatatype.NS, nsec))
        self.assertTrue(type_in_bitmap(dns.rdatatype.NSEC, nsec))
        self.assertFalse(type_in_bitmap(dns.rdatatype.DS, nsec))
        self.assertFalse(type_in_bitmap(dns.rdatatype.TLSA, nsec))

    def test_nsec_covers(self):
        nsec = dns.rrset.from_text("a.example.test.", 300, "IN", "NSEC",
                                   "c.example.test. A RRSIG NSEC")
        self.assertTrue(nsec_covers_name(nsec,
                                         dns.name.from_text("b.example.test.")))
        self.assertFalse(nsec_covers_name(nsec,
                                          dns.name.from_text("d.example.test.")))
        last = dns.rrset.from_text("z.example.test.", 300, "IN", "NSEC",
                                   "example.test. A RRSIG NSEC")
        self.assertTrue(nsec_covers_name(last,
                                         dns.name.from_text("zz.example.test.")))


class TestDSAbsence(unittest.TestCase):

    """Authenticated denial of DS at a delegation point"""

    def setUp(self):
        self.zone = SignedZone("example.test.", *ALGORITHMS[0])
        self.child = dns.name.from_text("sub.example.test.")
        self.ctx = SimpleNamespace(key_cache=self.zone.key_cache(),
                                   chain=[], chain_seen=set())
        self.zobj = Zone(self.zone.name)

    def message(self, nsec_text, owner="sub.example.test."):
        msg = dns.message.Message()
        if nsec_text is not None:
            nsec = dns.rrset.from_text(owner, 300, "IN", "NSEC", nsec_text)
            msg.authority.append(nsec)
            msg.authority.append(self.zone.sign(nsec))
        return msg

    def test_insecure_delegation(self):
        msg = self.message("z.example.test. NS RRSIG NSEC")
        self.assertTrue(authenticate_no_ds(self.ctx, self.zobj,
                                           self.child, msg))
        # the NSEC record and its signature are now in the chain
        self.assertEqual(len(self.ctx.chain), 2)

    def test_not_delegation(self):
        msg = self.message("z.example.test. A RRSIG NSEC")
        self.assertFalse(authenticate_no_ds(self.ctx, self.zobj,
                                            self.child, msg))

    def test_empty_non_terminal(self):
        msg = self.message("a.sub.example.test. A RRSIG NSEC",
                           owner="mail.example.test.")
        self.assertFalse(authenticate_no_ds(self.ctx, self.zobj,
                                            self.child, msg))

    def test_ds_present(self):
        msg = self.message("z.example.test. NS DS RRSIG NSEC")
        with self.assertRaises(ValidationFailure):
            authenticate_no_ds(self.ctx, self.zobj, self.child, msg)

    def test_no_proof(self):
        with self.assertRaises(ValidationFailure):
            authenticate_no_ds(self.ctx, self.zobj, self.child,
                               self.message(None))

    def test_bad_signature(self):
        msg = self.message("z.example.test. NS RRSIG NSEC")
        forged = dns.rrset.from_text("sub.example.test.", 300, "IN", "NSEC",
                                     "z.example.test. NS DS RRSIG NSEC")
        msg.authority[0] = forged
        with self.assertRaises(ValidationFailure):
            authenticate_no_ds(self.ctx, self.zobj, self.child, msg)

    def test_nsec3_iterations_over_limit(self):
        """NSEC3 with too many iterations: insecure, and never hashed"""
        nsec3 = dns.rrset.from_text(
            "0p9mhaveqvm6t7vbl5lop2u3t2rp3tom.example.test.", 300, "IN",
            "NSEC3", "1 0 {} aabbccdd 2t7b4g4vsa5smi47k61mv5bv1a22bojr "
            "A RRSIG".format(Prefs.N3_HASHLIMIT + 1))
        msg = dns.message.Message()
        msg.authority.append(nsec3)
        msg.authority.append(self.zone.sign(nsec3))
        with mock.patch('chainlib.lookup.get_hashed_owner') as hashed:
            self.assertTrue(authenticate_no_ds(self.ctx, self.zobj,
                                               self.child, msg))
        hashed.assert_not_called()
        self.assertEqual(len(self.ctx.chain), 2)

    def test_rrset_dict(self):
        msg = self.message("z.example.test. NS RRSIG NSEC")
        rrset_dict, found_sigs = get_rrset_dict(msg.authority)
        self.assertTrue(found_sigs)
        srrset = rrset_dict[(self.child, dns.rdatatype.NSEC)]
        self.assertEqual(srrset.signer(), self.zone.name)
        self.assertEqual(len(srrset.records()), 2)


class SignedHierarchy:
    """
    Signed root, test. and example.test. zones, answering queries the
    way a (non validating) upstream resolver would. With secure=False,
    example.test. is an unsigned delegation, proven by an NSEC record.
    """

    tlsa_name = dns.name.from_text("_443._tcp.example.test.")

    def __init__(self, secure=True):
        algorithm, keygen = ALGORITHMS[0]
        self.root = SignedZone(".", algorithm, keygen)
        self.test = SignedZone("test.", algorithm, keygen)
        self.example = SignedZone("example.test.", algorithm, keygen)
        self.answers = {}
        self.authority = {}
        self.nxdomain = set()
        self.queries = []

        for zone in (self.root, self.test, self.example):
            self.add(zone.dnskey_rrset, zone.dnskey_rrsigs)
        self.add_ds(self.test, self.root)

        tlsa = dns.rrset.from_text(self.tlsa_name, 300, "IN", "TLSA",
                                   "3 1 1 0a0b0c0d")
        if secure:
            self.add_ds(self.example, self.test)
            self.add(tlsa, self.example.sign(tlsa))
        else:
            nsec = dns.rrset.from_text("example.test.", 300, "IN", "NSEC",
                                       "z.test. NS RRSIG NSEC")
            self.authority[(nsec.name, dns.rdatatype.DS)] = [
                nsec, self.test.sign(nsec)]
            self.add(tlsa)

    def add(self, rrset, rrsigs=None):
        self.answers[(rrset.name, rrset.rdtype)] = [
            x for x in (rrset, rrsigs) if x is not None]

    def add_ds(self, child, parent):
        ds = dns.rrset.from_rdata(
            child.name, 3600,
            dns.dnssec.make_ds(child.name, child.dnskey, "SHA256"))
        self.add(ds, parent.sign(ds))

    def trust_anchors(self):
        return [dns.dnssec.make_ds(self.root.name, self.root.dnskey,
                                   "SHA256")]

    def send_query(self, msg, nsaddr, newid=False):
        question = msg.question[0]
        key = (question.name, question.rdtype)
        self.queries.append(key)
        response = dns.message.make_response(msg)
        if question.name in self.nxdomain:
            response.set_rcode(dns.rcode.NXDOMAIN)
        response.answer += self.answers.get(key, [])
        response.authority += self.authority.get(key, [])
        return dns.message.from_wire(response.to_wire())

    @contextlib.contextmanager
    def serving(self):
        with mock.patch('chainlib.lookup.send_query', self.send_query), \
             mock.patch('chainlib.lookup.get_trust_anchors',
                        self.trust_anchors):
            yield


def record_types(records):
    return [(rr.name.to_text(), dns.rdatatype.to_text(rr.rdtype))
            for rr in records]


class TestLookup(unittest.TestCase):

    """Validated lookups against a signed hierarchy"""

    def setUp(self):
        self.debug = Prefs.DEBUG

    def tearDown(self):
        Prefs.DEBUG = self.debug

    def general(self, hierarchy, qname="_443._tcp.example.test.",
                qtype="TLSA"):
        context = Context(CHAIN_EXTENSIONS, upstreams=["192.0.2.1"])
        with hierarchy.serving(), context, quiet():
            return context.general(qname, qtype)

    def test_secure_answer(self):
        response = self.general(SignedHierarchy())
        self.assertEqual(response.status, RESPSTATUS_GOOD)
        self.assertIsNone(response.reason)
        self.assertTrue(response.secure)
        reply, = response.replies_tree
        self.assertEqual(record_types(reply.answer),
                         [("_443._tcp.example.test.", "TLSA"),
                          ("_443._tcp.example.test.", "RRSIG")])
        self.assertEqual(record_types(response.validation_chain),
                         [(".", "DNSKEY"), (".", "RRSIG"),
                          ("test.", "DS"), ("test.", "RRSIG"),
                          ("test.", "DNSKEY"), ("test.", "RRSIG"),
                          ("example.test.", "DS"), ("example.test.", "RRSIG"),
                          ("example.test.", "DNSKEY"),
                          ("example.test.", "RRSIG")])

    def test_insecure_delegation(self):
        response = self.general(SignedHierarchy(secure=False))
        self.assertEqual(response.status, RESPSTATUS_NO_SECURE_ANSWERS)
        self.assertIn("example.test.", response.reason)
        self.assertFalse(response.secure)

    def test_forged_answer(self):
        hierarchy = SignedHierarchy()
        key = (hierarchy.tlsa_name, dns.rdatatype.TLSA)
        tlsa, rrsigs = hierarchy.answers[key]
        forged = dns.rrset.from_text(tlsa.name, 300, "IN", "TLSA",
                                     "3 1 1 0a0b0c0e")
        hierarchy.answers[key] = [forged, rrsigs]
        response = self.general(hierarchy)
        self.assertEqual(response.status, RESPSTATUS_ALL_BOGUS_ANSWERS)
        self.assertTrue(response.reason.startswith("Validation fail"))
        self.assertEqual(response.validation_chain, [])

    def test_ds_mismatch(self):
        hierarchy = SignedHierarchy()
        other = SignedZone("example.test.", *ALGORITHMS[0])
        hierarchy.add_ds(other, hierarchy.test)
        response = self.general(hierarchy)
        self.assertEqual(response.status, RESPSTATUS_ALL_BOGUS_ANSWERS)
        self.assertIn("DS did not match", response.reason)

    def test_nxdomain(self):
        hierarchy = SignedHierarchy()
        hierarchy.nxdomain.add(dns.name.from_text("_25._tcp.example.test."))
        response = self.general(hierarchy, qname="_25._tcp.example.test.")
        self.assertEqual(response.status, RESPSTATUS_NO_NAME)

    def test_no_upstream_response(self):
        hierarchy = SignedHierarchy()
        hierarchy.send_query = lambda msg, nsaddr, newid=False: None
        response = self.general(hierarchy)
        self.assertEqual(response.status, RESPSTATUS_ALL_TIMEOUT)

    def test_zone_keys_fetched_once(self):
        hierarchy = SignedHierarchy()
        self.general(hierarchy)
        dnskey_queries = [q for q in hierarchy.queries
                          if q[1] == dns.rdatatype.DNSKEY]
        self.assertEqual(len(dnskey_queries), len(set(dnskey_queries)))
        self.assertEqual(len(dnskey_queries), 3)

    def test_key_cache_dump(self):
        Prefs.DEBUG = True
        context = Context(CHAIN_EXTENSIONS, upstreams=["192.0.2.1"])
        output = io.StringIO()
        with SignedHierarchy().serving(), context, \
                contextlib.redirect_stdout(output):
            context.general("_443._tcp.example.test.", "TLSA")
        self.assertIn("#### Key Cache dump", output.getvalue())
        self.assertIn("ZONE: example.test.", output.getvalue())

    def test_resolve_chain(self):
        hierarchy = SignedHierarchy()
        ledger = Ledger()

        def factory(extensions):
            return Context(extensions, upstreams=["192.0.2.1"])

        with hierarchy.serving(), quiet():
            resolve_chain(ledger, "_443._tcp.example.test", "TLSA",
                          context_factory=factory)
        self.assertEqual(len(ledger), 12)
        tlsa, rrsigs = hierarchy.answers[(hierarchy.tlsa_name,
                                          dns.rdatatype.TLSA)]
        self.assertEqual(ledger.snapshot()[0].data, to_wire(tlsa))
        root_dnskey = hierarchy.root.dnskey_rrset
        self.assertEqual(ledger.snapshot()[2].data, to_wire(root_dnskey))
        self.assertEqual(ledger.total_size(),
                         sum(len(r.data) for r in ledger))
        blob = encode(ledger.snapshot())
        self.assertEqual(blob.payload_length, ledger.total_size())

    def test_resolve_chain_insecure(self):
        ledger = Ledger()

        def factory(extensions):
            return Context(extensions, upstreams=["192.0.2.1"])

        with SignedHierarchy(secure=False).serving(), quiet(), \
                quiet_stderr():
            with self.assertRaises(InsecureError):
                resolve_chain(ledger, "_443._tcp.example.test", "TLSA",
                              context_factory=factory)
        self.assertEqual(len(ledger), 0)


class TestOptions(unittest.TestCase):

    def setUp(self):
        self.saved = {k: getattr(Prefs, k) for k in dir(Prefs)
                      if k.isupper()}
        Prefs.RESOLVERS = []

    def tearDown(self):
        for k, v in self.saved.items():
            setattr(Prefs, k, v)

    def test_options(self):
        port = process_args(["-v", "-v", "-r", "192.0.2.1", "-r", "::1",
                             "--sname", "www.example.test", "--cert", "a.crt",
                             "--key", "a.key", "--exttype", "65281",
                             "--strict", "4433"])
        self.assertEqual(port, 4433)
        self.assertEqual(Prefs.VERBOSE, 2)
        self.assertEqual(Prefs.RESOLVERS, ["192.0.2.1", "::1"])
        self.assertEqual(Prefs.SERVER_NAME, "www.example.test")
        self.assertEqual((Prefs.CERTFILE, Prefs.KEYFILE), ("a.crt", "a.key"))
        self.assertEqual(Prefs.EXTENSION_TYPE, 65281)
        self.assertTrue(Prefs.STRICT)
        self.assertFalse(Prefs.TLS13_CERTIFICATE)

    def test_tls13_certificate(self):
        process_args(["--tls13cert", "443"])
        self.assertTrue(Prefs.TLS13_CERTIFICATE)

    def test_default_server_name(self):
        process_args(["443"])
        self.assertEqual(Prefs.SERVER_NAME, socket.gethostname())

    def test_bad_arguments(self):
        for args in [[], ["0"], ["65536"], ["http"], ["443", "444"],
                     ["--exttype", "70000", "443"], ["--bogus", "443"]]:
            with self.subTest(args=args):
                with quiet():
                    with self.assertRaises(SystemExit):
                        process_args(args)


def have_libssl():
    try:
        load_libraries()
    except TLSError:
        return False
    return True


def make_certificate(directory):
    """Write a self-signed certificate and key; return their paths"""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=1))
            .sign(key, hashes.SHA256()))
    certfile = os.path.join(directory, "server.crt")
    keyfile = os.path.join(directory, "server.key")
    with open(certfile, "wb") as f:
        f.write(cert.public_bytes(serialization.Encoding.PEM))
    with open(keyfile, "wb") as f:
        f.write(key.private_bytes(serialization.Encoding.PEM,
                                  serialization.PrivateFormat.PKCS8,
                                  serialization.NoEncryption()))
    return certfile, keyfile


class TestIntegrator(unittest.TestCase):

    def test_tlsa_name(self):
        self.assertEqual(tlsa_name(443, "example.test"),
                         "_443._tcp.example.test")
        self.assertEqual(tlsa_name(25, "mail.example.test"),
                         "_25._tcp.mail.example.test")

    def test_get_chain_blob(self):
        factory = fake_factory(answers=[b'\x03\x04\xaa\xbb'],
                               chain=[b'\x01\x02'])
        with quiet():
            blob = get_chain_blob(443, "example.test", context_factory=factory)
        self.assertEqual(bytes(blob),
                         b'\x00\x35\x00\x06\x03\x04\xaa\xbb\x01\x02')
        self.assertEqual(factory.created[0].queries,
                         [("_443._tcp.example.test", "TLSA")])

    def test_get_chain_blob_failures(self):
        for status, _ in STATUS_VECTORS:
            with self.subTest(status=status):
                factory = fake_factory(status=status, answers=[b'\x01'])
                with quiet(), quiet_stderr():
                    blob = get_chain_blob(443, "example.test",
                                          context_factory=factory)
                self.assertIsNone(blob)

    def test_get_chain_blob_overflow(self):
        factory = fake_factory(answers=[b'\x00' * 40000],
                               chain=[b'\x00' * 30000])
        with quiet():
            self.assertIsNone(get_chain_blob(443, "example.test",
                                             context_factory=factory))

    def test_serverinfo(self):
        blob = ChainBlob(53, b'\x01\x02')
        # TLS 1.2 and below ServerHello only, as with serverinfo v1
        self.assertEqual(serverinfo_v2(bytes(blob)),
                         b'\x00\x00\x01\xd4\x00\x35\x00\x02\x01\x02')
        self.assertEqual(serverinfo_v2(bytes(blob), SERVERINFO_CONTEXT_TLS13),
                         b'\x00\x00\x11\x80\x00\x35\x00\x02\x01\x02')


OPENSSL = shutil.which("openssl")

SERVERINFO_PEM = re.compile(
    r"-----BEGIN SERVERINFO FOR EXTENSION (\d+)-----\n(.*?)-----END", re.S)


def s_client(port, *options):
    """
    Handshake with openssl s_client, asking for extension type 53.
    Returns (negotiated protocol version or None, dict of extension
    type -> extension data (type, length, data) that the server sent).
    """
    command = [OPENSSL, "s_client", "-connect", "127.0.0.1:{}".format(port),
               "-serverinfo", "53"] + list(options)
    result = subprocess.run(command, stdin=subprocess.DEVNULL,
                            stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                            timeout=30, check=False)
    output = result.stdout.decode(errors='replace')
    version = re.search(r"New, (TLSv1\.[23]), Cipher is", output)
    extensions = {}
    for ext_type, data in SERVERINFO_PEM.findall(output):
        extensions[int(ext_type)] = base64.b64decode("".join(data.split()))
    return version.group(1) if version else None, extensions


@unittest.skipUnless(have_libssl(), "OpenSSL libssl not available")
class TestServer(unittest.TestCase):

    """Handshakes against a live server on an ephemeral port"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.certfile, self.keyfile = make_certificate(self.tmpdir)
        self.servers = []

    def tearDown(self):
        for server, tls_context in self.servers:
            server.shutdown()
            server.server_close()
            tls_context.free()
        shutil.rmtree(self.tmpdir)

    def start(self, blob, tls13_certificate=False):
        tls_context = make_tls_context(blob, certfile=self.certfile,
                                       keyfile=self.keyfile, cafile=None,
                                       client_auth=False,
                                       tls13_certificate=tls13_certificate)
        server = ChainServer(0, tls_context, blob, address='127.0.0.1')
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        self.servers.append((server, tls_context))
        return server, tls_context

    def handshake(self, port):
        """Connect, handshake, and wait for the server's close_notify"""
        client_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        client_context.check_hostname = False
        client_context.verify_mode = ssl.CERT_NONE
        with socket.create_connection(('127.0.0.1', port), timeout=10) as sock:
            with client_context.wrap_socket(sock) as tls:
                version = tls.version()
                data = tls.recv(1024)
        return version, data

    def test_no_extension(self):
        with quiet(), quiet_stderr():
            server, tls_context = self.start(None)
            version, data = self.handshake(server.port)
        self.assertIn(version, ("TLSv1.2", "TLSv1.3"))
        self.assertEqual(data, b'')
        self.assertEqual(tls_context.serverinfo_types, set())

    def test_shared_blob(self):
        blob = ChainBlob(53, b'\x03\x04\xaa\xbb\x01\x02')
        with quiet(), quiet_stderr():
            server, tls_context = self.start(blob)
            first = self.handshake(server.port)
            second = self.handshake(server.port)
        self.assertEqual(first[1], b'')
        self.assertEqual(second[1], b'')
        self.assertEqual(tls_context.serverinfo_types, {53})
        self.assertIs(server.blob, blob)

    @unittest.skipUnless(OPENSSL, "openssl command not available")
    def test_extension_sent_tls12(self):
        """Every TLS 1.2 client asking for it gets the same chain data"""
        blob = ChainBlob(53, b'\x03\x04\xaa\xbb\x01\x02')
        with quiet(), quiet_stderr():
            server, _ = self.start(blob)
            first = s_client(server.port, "-tls1_2")
            second = s_client(server.port, "-tls1_2")
        self.assertEqual(first, ("TLSv1.2", {53: bytes(blob)}))
        self.assertEqual(second, first)

    @unittest.skipUnless(OPENSSL, "openssl command not available")
    def test_extension_tls13(self):
        """TLS 1.3 handshakes complete; the chain is not in the ServerHello"""
        with quiet(), quiet_stderr():
            server, _ = self.start(ChainBlob(53, b'\x03\x04\xaa\xbb\x01\x02'))
            result = s_client(server.port, "-tls1_3")
        self.assertEqual(result, ("TLSv1.3", {}))

    @unittest.skipUnless(OPENSSL, "openssl command not available")
    def test_extension_absent(self):
        with quiet(), quiet_stderr():
            server, _ = self.start(None)
            result = s_client(server.port, "-tls1_2")
        self.assertEqual(result, ("TLSv1.2", {}))

    @unittest.skipUnless(OPENSSL, "openssl command not available")
    def test_tls13_certificate_placement(self):
        blob = ChainBlob(53, b'\x03\x04\xaa\xbb\x01\x02')
        with quiet(), quiet_stderr():
            server, tls_context = self.start(blob, tls13_certificate=True)
            tls12 = s_client(server.port, "-tls1_2")
            # a client that does not ask for the extension
            version, data = self.handshake(server.port)
        self.assertEqual(tls12, ("TLSv1.2", {53: bytes(blob)}))
        self.assertIn(version, ("TLSv1.2", "TLSv1.3"))
        self.assertEqual(data, b'')
        self.assertEqual(tls_context.serverinfo_types, {53})

    def test_extension_registered_once(self):
        blob = ChainBlob(53, b'\x01\x02')
        with quiet(), quiet_stderr():
            server, tls_context = self.start(blob)
        with self.assertRaises(TLSError):
            tls_context.add_serverinfo(bytes(blob))

    def test_failed_handshake(self):
        """A broken client does not stop the next one"""
        with quiet(), quiet_stderr():
            server, tls_context = self.start(ChainBlob(53, b'\x01\x02'))
            with socket.create_connection(('127.0.0.1', server.port),
                                          timeout=10) as sock:
                sock.sendall(b"GET / HTTP/1.0\r\n\r\n")
                try:
                    sock.recv(1024)
                except OSError:
                    pass
            with socket.create_connection(('127.0.0.1', server.port),
                                          timeout=10):
                pass
            version, data = self.handshake(server.port)
        self.assertIn(version, ("TLSv1.2", "TLSv1.3"))
        self.assertEqual(data, b'')

    def test_bad_certificate(self):
        missing = os.path.join(self.tmpdir, "missing.crt")
        with self.assertRaises(TLSError):
            make_tls_context(None, certfile=missing, keyfile=self.keyfile,
                             cafile=None, client_auth=False)

    def test_bad_cafile(self):
        missing = os.path.join(self.tmpdir, "missing-ca.pem")
        with self.assertRaises(TLSError):
            make_tls_context(None, certfile=self.certfile,
                             keyfile=self.keyfile, cafile=missing,
                             client_auth=True)


if __name__ == '__main__':
    unittest.main()
