"""
DNSSEC authentication chain resolution: one validated query, whose
answer records and validation chain records are appended, in wire
format, to a Ledger.
"""

import sys

from chainlib.prefs import Prefs
from chainlib.stats import stats
from chainlib.exception import (ContextError, NoNameError,
                                NoDataError, QueryTimeoutError, InsecureError,
                                BogusError, UnknownStatusError)
from chainlib.ledger import WireRecord
from chainlib.context import Context
from chainlib.response import (RESPSTATUS_GOOD, RESPSTATUS_NO_NAME,
                               RESPSTATUS_ALL_TIMEOUT,
                               RESPSTATUS_NO_SECURE_ANSWERS,
                               RESPSTATUS_ALL_BOGUS_ANSWERS, jsonout)


CHAIN_EXTENSIONS = {
    "dnssec_return_only_secure": True,
    "dnssec_return_validation_chain": True,
}

# response status -> (exception class, diagnostic)
STATUS_ERRORS = {
    RESPSTATUS_NO_NAME: (NoNameError, "Non existent domain name."),
    RESPSTATUS_ALL_TIMEOUT: (QueryTimeoutError, "Query timed out."),
    RESPSTATUS_NO_SECURE_ANSWERS: (InsecureError, "Insecure answer records."),
    RESPSTATUS_ALL_BOGUS_ANSWERS: (BogusError, "All bogus answers."),
}


def fail(message):
    print("FAIL: {}".format(message), file=sys.stderr)


def check_status(qname, response):
    """Raise the ChainError corresponding to a non GOOD response status"""

    if response.status == RESPSTATUS_GOOD:
        return
    exc_class, text = STATUS_ERRORS.get(
        response.status,
        (UnknownStatusError, "error status code: {}.".format(response.status)))
    if response.reason:
        text = "{} ({})".format(text, response.reason)
    fail("{}: {}".format(qname, text))
    raise exc_class("{}: {}".format(qname, text))


def stage_records(qname, context, response):
    """
    Convert the answer records of every reply block, then the
    validation chain records, to WireRecords. Returns the list, in
    the order the records must appear in the chain.
    """

    staged = []
    for reply in response.replies_tree:
        if not reply.answer:
            fail("{}: NODATA response.".format(qname))
            raise NoDataError("{}: NODATA response".format(qname))
        for rr in reply.answer:
            staged.append(WireRecord(context.rr_to_wire(rr)))
    for rr in response.validation_chain:
        staged.append(WireRecord(context.rr_to_wire(rr)))
    return staged


def resolve_chain(ledger, qname, qtype, context_factory=Context):
    """
    Resolve qname/qtype with DNSSEC validation and append the answer
    records followed by the validation chain records to ledger. Raises
    a ChainError subclass on failure, in which case the ledger is left
    untouched.
    """

    try:
        context = context_factory(CHAIN_EXTENSIONS)
    except ContextError as e:
        fail("Context creation failed: {}".format(e))
        raise

    with context:
        response = context.general(qname, qtype)
        if Prefs.JSON:
            jsonout(response)
        if Prefs.STATS:
            stats.print()
        check_status(qname, response)
        staged = stage_records(qname, context, response)

    for record in staged:
        ledger.insert(record)
