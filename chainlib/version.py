VERSION = "0.3"
