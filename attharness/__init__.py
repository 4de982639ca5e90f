"""
attharness - scripted conformance harness for attribute protocol clients.

A scripted peer replays a fixed PDU exchange over a SEQPACKET socket pair
and fails the test on the first octet that differs from the script.
"""
__version__ = "0.1.0"
