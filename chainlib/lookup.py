"""
DNSSEC validated lookup with authentication chain collection.

Queries are sent to upstream recursive resolvers with checking
disabled; every RRset in the answer is then authenticated here, from
the root trust anchors down, one zone cut at a time. All the DS and
DNSKEY RRsets (and their signatures) used along the way, plus any
NSEC/NSEC3 records needed to prove insecure delegations or wildcard
expansions, are accumulated in the context's validation chain, in the
order they were authenticated.

"""

import time

import dns.exception
import dns.name
import dns.rcode
import dns.rdatatype

from chainlib.prefs import Prefs
from chainlib.stats import stats
from chainlib.exception import ValidationFailure, InsecureDelegation
from chainlib.query import Query
from chainlib.rrset import RRset, split_rrset
from chainlib.zone import Zone
from chainlib.response import (Response, Reply,
                               RESPSTATUS_NO_NAME,
                               RESPSTATUS_ALL_TIMEOUT,
                               RESPSTATUS_NO_SECURE_ANSWERS,
                               RESPSTATUS_ALL_BOGUS_ANSWERS)
from chainlib.utils import vprint, send_query, get_rrset_from_section
from chainlib.dnssec import (get_trust_anchors, validate_all,
                             check_self_signature, ds_rrset_matches_dnskey,
                             supported_algorithm_present, type_in_bitmap,
                             get_hashed_owner, nsec_covers_name,
                             nsec3_covers_name)


def get_rrset_dict(section):
    """
    Create and return dict of RRset objects from given message section.
    Also returns a boolean that indicates whether signed RRs were found.
    """

    rrset_dict = {}
    found_sigs = False

    for rrset in section:
        if rrset.rdtype == dns.rdatatype.RRSIG:
            found_sigs = True
            if (rrset.name, rrset.covers) in rrset_dict:
                r = rrset_dict[(rrset.name, rrset.covers)]
                r.set_rrsig(rrset)
            else:
                r = RRset(rrset.name, rrset.covers, rrsig=rrset)
                rrset_dict[(rrset.name, rrset.covers)] = r
        else:
            if (rrset.name, rrset.rdtype) in rrset_dict:
                r = rrset_dict[(rrset.name, rrset.rdtype)]
                r.set_rrset(rrset)
            else:
                r = RRset(rrset.name, rrset.rdtype, rrset=rrset)
                rrset_dict[(rrset.name, rrset.rdtype)] = r

    return rrset_dict, found_sigs


def add_to_chain(ctx, srrset):
    """
    Append the records of a signed RRset object to the validation
    chain, unless that RRset is already there.
    """
    key = (srrset.rrname, srrset.rrtype)
    if key in ctx.chain_seen:
        return
    ctx.chain_seen.add(key)
    ctx.chain += srrset.records()


def check_query_count_limit():
    """Check query count limit"""
    if stats.cnt_query >= Prefs.MAX_QUERY:
        raise ValidationFailure("Max number of queries ({}) exceeded.".format(
            Prefs.MAX_QUERY))


def send_query_upstreams(ctx, query):
    """
    Send query to the upstream resolvers in turn, returning the first
    usable (NOERROR or NXDOMAIN) response, or None if there was none.
    """

    msg = query.make_message()
    time_start = time.time()

    for nsaddr in ctx.upstreams:
        check_query_count_limit()
        if vprint():
            print("# QUERY: {} {} at {}".format(
                query.qname, dns.rdatatype.to_text(query.qtype), nsaddr.addr))
        try:
            response = send_query(msg, nsaddr, newid=True)
        except OSError as e:
            stats.cnt_fail += 1
            print("WARN: OSError {}: {}: {}".format(e.errno, e.strerror,
                                                   nsaddr.addr))
            continue
        except dns.exception.DNSException as e:
            stats.cnt_fail += 1
            print("WARN: bad response from {}: {}".format(nsaddr.addr, e))
            continue
        if not response:
            continue
        if response.rcode() not in [dns.rcode.NOERROR, dns.rcode.NXDOMAIN]:
            stats.cnt_fail += 1
            print("WARN: response {} from {}".format(
                dns.rcode.to_text(response.rcode()), nsaddr.addr))
            continue
        query.elapsed_last = time.time() - time_start
        return response

    return None


def fetch_response(ctx, qname, qtype):
    """Query for data needed to authenticate the chain"""
    query = Query(qname, qtype)
    msg = send_query_upstreams(ctx, query)
    if msg is None:
        raise ValidationFailure("No response for {}".format(query))
    return msg


def validate_signed(ctx, srrset, zone):
    """
    Validate signed RRset object that must be signed by the given,
    already authenticated, zone.
    """
    if srrset.rrset is None or not srrset.rrsig:
        raise ValidationFailure("Missing data or signatures for {}".format(
            srrset))
    sigs = [sig for sig in srrset.rrsig if sig.signer == zone.name]
    if not sigs:
        raise ValidationFailure("{} is not signed by zone {}".format(
            srrset, zone.name))
    verified, failed = validate_all(srrset.rrset, sigs, ctx.key_cache)
    if not verified:
        raise ValidationFailure("Validation fail: {}/{}, keys={}".format(
            srrset.rrname, dns.rdatatype.to_text(srrset.rrtype), failed))
    srrset.set_validated()


def match_ds_zone(ctx, zone):
    """
    DS (Delegation Signer) processing: Authenticate the secure delegation
    to the zone, by fetching its DNSKEY RRset, authenticating the self
    signature on it, and matching one of the signing DNSKEYs to the
    (previously authenticated) DS data in the zone object.
    """

    if not supported_algorithm_present(zone.ds_rdatas()):
        raise InsecureDelegation(
            "No supported algorithms in DS set for {}".format(zone.name))

    msg = fetch_response(ctx, zone.name, dns.rdatatype.DNSKEY)
    dnskey_rrset, dnskey_rrsigs = get_rrset_from_section(
        msg, msg.answer, zone.name, dns.rdatatype.DNSKEY)
    if dnskey_rrset is None:
        raise ValidationFailure("No {} DNSKEY RRset found in answer".format(
            zone.name))
    if dnskey_rrsigs is None:
        raise ValidationFailure("No signatures found for {} DNSKEY RRset".format(
            zone.name))

    keylist, sigkeys = check_self_signature(dnskey_rrset, dnskey_rrsigs)

    matched = False
    for key in sigkeys:
        if key.zone_flag and ds_rrset_matches_dnskey(zone.ds_rdatas(), key):
            zone.mark_matched(key)
            matched = True
    if not matched:
        raise ValidationFailure("DS did not match DNSKEY for {}".format(
            zone.name))

    zone.install_keys(keylist, ttl=dnskey_rrset.ttl)
    zone.set_secure(True)
    ctx.key_cache.install(zone.name, keylist)
    ctx.zones[zone.name] = zone
    add_to_chain(ctx, RRset(zone.name, dns.rdatatype.DNSKEY,
                            rrset=dnskey_rrset, rrsig=dnskey_rrsigs))
    stats.cnt_zone += 1
    if vprint():
        zone.print_details()


def get_root_zone(ctx):
    """
    Return the authenticated root zone. The first time through, the
    root DNSKEY RRset is queried and authenticated against the root
    trust anchors.
    """
    if dns.name.root in ctx.zones:
        return ctx.zones[dns.name.root]
    zone = Zone(dns.name.root)
    zone.install_ds_rdatas(get_trust_anchors())
    try:
        match_ds_zone(ctx, zone)
    except InsecureDelegation as e:
        raise ValidationFailure("Root trust anchor unusable: {}".format(e))
    return zone


def closest_zone(ctx, name):
    """find closest enclosing authenticated zone"""
    candidates = [z for z in ctx.zones if name.is_subdomain(z)]
    return ctx.zones[max(candidates, key=len)]


def authenticate_no_ds(ctx, zone, name, msg):
    """
    A DS query for name returned no DS RRset. Authenticate the NSEC or
    NSEC3 records in the authority section, which must be signed by
    zone. Returns True if they prove an unsigned delegation at name,
    False if name is not a delegation point at all. Raises
    ValidationFailure if nothing proves the absence of the DS RRset.
    """

    rrset_dict, _ = get_rrset_dict(msg.authority)
    optout = False

    for (rrname, rrtype) in rrset_dict:
        if rrtype not in (dns.rdatatype.NSEC, dns.rdatatype.NSEC3):
            continue
        srrset = rrset_dict[(rrname, rrtype)]
        if srrset.rrset is None:
            continue
        validate_signed(ctx, srrset, zone)
        add_to_chain(ctx, srrset)
        if rrtype == dns.rdatatype.NSEC:
            nsec_rr = srrset.rrset[0]
            if rrname == name:
                if type_in_bitmap(dns.rdatatype.DS, nsec_rr):
                    raise ValidationFailure("NSEC for {} has DS bit".format(
                        name))
                return (type_in_bitmap(dns.rdatatype.NS, nsec_rr) and
                        not type_in_bitmap(dns.rdatatype.SOA, nsec_rr))
            if (nsec_covers_name(srrset.rrset, name) and
                    nsec_rr.next.is_subdomain(name)):
                if vprint():
                    print("# INFO: Empty Non-Terminal: {}".format(name))
                return False
        else:
            nsec3_rr = srrset.rrset[0]
            if nsec3_rr.iterations > Prefs.N3_HASHLIMIT:
                if vprint():
                    print("# INFO: NSEC3 iterations {} over limit; "
                          "treating {} as insecure".format(
                              nsec3_rr.iterations, name))
                return True
            hashed_owner = get_hashed_owner(name, zone.name, nsec3_rr)
            if hashed_owner == rrname:
                if type_in_bitmap(dns.rdatatype.DS, nsec3_rr):
                    raise ValidationFailure("NSEC3 for {} has DS bit".format(
                        name))
                return (type_in_bitmap(dns.rdatatype.NS, nsec3_rr) and
                        not type_in_bitmap(dns.rdatatype.SOA, nsec3_rr))
            if (nsec3_rr.flags & 0x1 and
                    nsec3_covers_name(srrset.rrset, hashed_owner, zone.name)):
                optout = True

    if optout:
        if vprint():
            print("# INFO: NSEC3 opt-out span covers {}".format(name))
        return True

    raise ValidationFailure("No authenticated denial of DS for {}".format(name))


def walk_delegation(ctx, zone, name):
    """
    Determine whether name (immediately below the authenticated zone)
    is a zone cut. Returns the authenticated child Zone for a secure
    delegation, None if name is not a delegation point; raises
    InsecureDelegation for a provably unsigned delegation.
    """

    if name in ctx.noncuts:
        return None

    msg = fetch_response(ctx, name, dns.rdatatype.DS)
    if msg.rcode() == dns.rcode.NXDOMAIN:
        raise ValidationFailure("{} does not exist".format(name))

    ds_rrset, ds_rrsigs = get_rrset_from_section(msg, msg.answer,
                                                 name, dns.rdatatype.DS)
    if ds_rrset is None:
        if authenticate_no_ds(ctx, zone, name, msg):
            if vprint():
                print("# INSECURE Referral to zone: {}".format(name))
            raise InsecureDelegation(
                "Insecure delegation to {}".format(name))
        ctx.noncuts.add(name)
        return None

    if ds_rrsigs is None:
        raise ValidationFailure("No signatures found for {} DS set!".format(
            name))
    srrset = RRset(name, dns.rdatatype.DS, rrset=ds_rrset, rrsig=ds_rrsigs)
    validate_signed(ctx, srrset, zone)
    add_to_chain(ctx, srrset)
    if vprint():
        print("# SECURE Referral to zone: {}".format(name))

    child = Zone(name)
    child.install_ds_rdatas(ds_rrset, ttl=ds_rrset.ttl)
    match_ds_zone(ctx, child)
    return child


def authenticate_path(ctx, name):
    """
    Authenticate the chain of trust from the root down towards name,
    label by label. Returns the closest enclosing secure zone of name.
    Raises InsecureDelegation if an unsigned delegation is found on the
    way, and ValidationFailure on any authentication failure.
    """

    get_root_zone(ctx)
    zone = closest_zone(ctx, name)
    labels = name.relativize(zone.name).labels
    zone_labels = zone.name.labels
    for label in reversed(labels):
        zone_labels = (label,) + zone_labels
        child = walk_delegation(ctx, zone, dns.name.Name(zone_labels))
        if child is not None:
            zone = child
    return zone


def validate_rrset(ctx, srrset):
    """
    Validate signed RRset object. If we don't have the signer's keys
    yet, authenticate the chain of trust down to the signer first.
    """

    signer = srrset.signer()
    if not srrset.rrname.is_subdomain(signer):
        raise ValidationFailure("Signer {} not an ancestor of {}".format(
            signer, srrset.rrname))
    if not ctx.key_cache.has_key(signer):
        zone = authenticate_path(ctx, signer)
        if zone.name != signer:
            raise ValidationFailure("Signer {} is not a zone apex".format(
                signer))

    validate_signed(ctx, srrset, ctx.zones[signer])
    if vprint():
        for line in srrset.rrset.to_text().split('\n'):
            print("# SECURE: {}".format(line))


def validate_wildcard(ctx, srrset, msg):
    """
    If RRset was synthesized from a wildcard, authenticate that no
    closer match exists (except if the query is for the wildcard itself).
    The proving NSEC/NSEC3 records are added to the validation chain.
    """

    wildcard = srrset.wildcard()
    if wildcard is None or wildcard == srrset.rrname:
        return

    wildcard_base = dns.name.Name(wildcard.labels[1:])
    next_label = srrset.rrname.relativize(wildcard_base).labels[-1]
    next_closer = dns.name.Name((next_label,) + wildcard_base.labels)
    if vprint():
        print("# INFO: Wildcard match: {}".format(wildcard))

    zone = ctx.zones[srrset.signer()]
    rrset_dict, _ = get_rrset_dict(msg.authority)

    for (rrname, rrtype) in rrset_dict:
        if rrtype not in (dns.rdatatype.NSEC, dns.rdatatype.NSEC3):
            continue
        nsec_srrset = rrset_dict[(rrname, rrtype)]
        if nsec_srrset.rrset is None:
            continue
        validate_signed(ctx, nsec_srrset, zone)
        if rrtype == dns.rdatatype.NSEC:
            covered = nsec_covers_name(nsec_srrset.rrset, next_closer)
        else:
            if nsec_srrset.rrset[0].iterations > Prefs.N3_HASHLIMIT:
                raise InsecureDelegation(
                    "NSEC3 iterations over limit in {}".format(zone.name))
            hashed_next = get_hashed_owner(next_closer, zone.name,
                                           nsec_srrset.rrset[0])
            covered = nsec3_covers_name(nsec_srrset.rrset, hashed_next,
                                        zone.name)
        if covered:
            add_to_chain(ctx, nsec_srrset)
            return

    raise ValidationFailure("Failed wildcard no closer match proof: {}".format(
        wildcard))


def dname_synthesized(cname_srrset, rrset_dict):
    """
    Is the (unsigned) CNAME RRset synthesized from an authenticated
    DNAME RRset earlier in the same answer?
    """
    cname_owner = cname_srrset.rrname
    target = cname_srrset.rrset[0].target
    for (rrname, rrtype) in rrset_dict:
        if rrtype != dns.rdatatype.DNAME:
            continue
        dname_srrset = rrset_dict[(rrname, rrtype)]
        if not dname_srrset.validated or not cname_owner.is_subdomain(rrname):
            continue
        dname = dname_srrset.rrset
        expected = cname_owner.relativize(rrname).concatenate(dname[0].target)
        if expected == target:
            return True
    return False


def authenticate_answer(ctx, msg, rrset_dict):
    """
    Authenticate every RRset in the answer section. Raises
    InsecureDelegation or ValidationFailure.
    """

    for (rrname, rrtype) in rrset_dict:
        srrset = rrset_dict[(rrname, rrtype)]
        if srrset.rrset is None:
            continue
        if srrset.rrsig is None:
            if (rrtype == dns.rdatatype.CNAME and
                    dname_synthesized(srrset, rrset_dict)):
                srrset.set_validated()
                continue
            authenticate_path(ctx, rrname)
            raise ValidationFailure(
                "Unsigned answer {}/{} in secure zone".format(
                    rrname, dns.rdatatype.to_text(rrtype)))
        validate_rrset(ctx, srrset)
        validate_wildcard(ctx, srrset, msg)


def resolve(ctx, qname, qtype):
    """
    Perform DNSSEC validated resolution of qname, qtype, and return
    a Response object.
    """

    query = Query(qname, qtype)
    response = Response(query.qname, query.qtype)

    msg = send_query_upstreams(ctx, query)
    if msg is None:
        response.set_status(RESPSTATUS_ALL_TIMEOUT,
                            "No response from any upstream resolver")
        return response

    if vprint():
        print("#        [Got answer in {:.3f} s]".format(query.elapsed_last))

    reply = Reply(rcode=msg.rcode())
    for rrset in msg.answer:
        reply.answer += split_rrset(rrset)
    response.add_reply(reply)

    if msg.rcode() == dns.rcode.NXDOMAIN:
        response.set_status(RESPSTATUS_NO_NAME, "NXDOMAIN")
        return response

    rrset_dict, _ = get_rrset_dict(msg.answer)
    if not rrset_dict:
        return response

    try:
        authenticate_answer(ctx, msg, rrset_dict)
    except InsecureDelegation as e:
        if ctx.only_secure:
            response.set_status(RESPSTATUS_NO_SECURE_ANSWERS, str(e))
            return response
    except ValidationFailure as e:
        response.set_status(RESPSTATUS_ALL_BOGUS_ANSWERS, str(e))
        return response
    else:
        response.secure = True

    if ctx.return_chain:
        response.validation_chain = list(ctx.chain)
    return response
