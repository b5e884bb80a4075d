"""
stats class.
"""


class Stats:
    """Statistics counters"""

    def __init__(self):
        self.reset()

    def reset(self):
        """Zero all counters"""
        self.elapsed = 0
        self.cnt_query = 0
        self.cnt_fail = 0
        self.cnt_timeout = 0
        self.cnt_tcp = 0
        self.cnt_tcp_fallback = 0
        self.cnt_zone = 0                    # secure zones authenticated
        self.cnt_sigverify = 0               # signatures verified

    def update_query(self, tcp=False):
        """update query counts"""
        if tcp:
            self.cnt_tcp += 1
        self.cnt_query += 1

    def print(self):
        """Print statistics"""
        print('\n### Statistics:')
        print("Elapsed time: {:.3f} sec".format(self.elapsed))
        print("Number of queries: {}".format(self.cnt_query))
        if self.cnt_tcp:
            print("Number of TCP queries: {}".format(self.cnt_tcp))
        if self.cnt_tcp_fallback:
            print("Number of TCP fallbacks: {}".format(self.cnt_tcp_fallback))
        if self.cnt_timeout:
            print("Number of query timeouts: {}".format(self.cnt_timeout))
        if self.cnt_fail:
            print("Number of queries failed: {:d} ({:.2f}%)".format(
                self.cnt_fail,
                (100.0 * self.cnt_fail/self.cnt_query)))
        print("Number of secure zones authenticated: {}".format(self.cnt_zone))
        print("Number of signatures verified: {}".format(self.cnt_sigverify))


# Global statistics object
stats = Stats()
