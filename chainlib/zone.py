"""
Zone class; a zone on the authentication path from the root.
"""

from binascii import hexlify


class DS:
    """Delegation Signer class; holds DS rdata and match status"""

    def __init__(self, rdata):
        self.rdata = rdata
        self.matched = False

    def set_matched(self, boolean):
        self.matched = boolean

    def __repr__(self):
        return "{} {} {} {}...".format(self.rdata.key_tag,
                                       self.rdata.algorithm,
                                       self.rdata.digest_type,
                                       self.rdata.digest.hex()[0:16])


class Zone:
    """Zone class"""

    def __init__(self, zone):
        self.name = zone                           # dns.name.Name
        self.dslist = []                           # list of DS objects
        self.keylist = []                          # list of DNSKEY objects
        self.ttl_ds = None
        self.ttl_dnskey = None
        self.secure = False

    def install_ds_rdatas(self, ds_rdatas, ttl=None):
        """Install DS rdata list"""
        self.ttl_ds = ttl
        for rdata in ds_rdatas:
            self.dslist.append(DS(rdata))

    def ds_rdatas(self):
        """Return DS rdata list"""
        return [ds.rdata for ds in self.dslist]

    def install_keys(self, keylist, ttl=None):
        """Install authenticated DNSKEY list"""
        self.ttl_dnskey = ttl
        self.keylist = keylist

    def set_secure(self, action):
        """Set zone to secure; when signed DS matches signed DNSKEY below"""
        self.secure = action

    def mark_matched(self, dnskey):
        """Mark the DS records that correspond to the given key"""
        for ds in self.dslist:
            if (ds.rdata.key_tag == dnskey.keytag and
                    ds.rdata.algorithm == dnskey.algorithm):
                ds.set_matched(True)

    def print_dsinfo(self):
        """Print DS info"""
        for ds in self.dslist:
            ds_data = ds.rdata
            print("# DS: {} {} {} {}{}".format(
                ds_data.key_tag,
                ds_data.algorithm,
                ds_data.digest_type,
                hexlify(ds_data.digest).decode(),
                " OK" if ds.matched else ""))

    def print_details(self):
        """Print zone information"""
        print("# ZONE: {}{}".format(self.name,
                                    " (Secure)" if self.secure else ""))
        if self.ttl_ds is not None:
            print("# TTL: Signer: {}, Keys: {}".format(self.ttl_ds,
                                                      self.ttl_dnskey))
        self.print_dsinfo()
        for key in self.keylist:
            print("# {}".format(key))

    def __repr__(self):
        return "<Zone: {}>".format(self.name)
