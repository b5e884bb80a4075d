#!/usr/bin/env python3

"""
chainserver.py
TLS server returning the DNSSEC authentication chain of its own TLSA
record in the dnssec_chain TLS extension.
"""


import sys
from chainlib.main import main


if __name__ == '__main__':

    sys.exit(main())
