# constants and helpers shared by the IPS patcher and the IPS patch creator;
# see https://zerosoft.zophar.net/ips.php

import hashlib, sys
from zlib import crc32

__version__ = "1.0.0"

IPS_HEADER = b"PATCH"  # file format id
IPS_TRAILER = b"EOF"   # end of hunks

IPS_MAX_OFFSET = 2 ** 24 - 1  # largest address a 3-byte offset can hold
IPS_MAX_HUNK_LEN = 0xffff     # largest payload/run length of any hunk

# encoded hunk sizes: 3-byte offset + 2-byte length (+ payload for
# non-RLE hunks; + 2-byte run length and 1 fill byte for RLE hunks)
IPS_HUNK_OVERHEAD = 5
IPS_RLE_HUNK_SIZE = 7

class IpsError(Exception):
    # base class of all errors raised by the codec
    pass

class MalformedPatchError(IpsError):
    pass

class UnexpectedEofError(IpsError):
    pass

class OutOfRangeWriteError(IpsError):
    pass

class SizeMismatchError(IpsError):
    pass

def decode_int(bytes_):
    # decode an IPS integer (unsigned, most significant byte first);
    # empty input decodes to 0
    value = 0
    for b in bytes_:
        value = (value << 8) | b
    return value & 0xffffffff

def encode_int(n, byteCnt):
    # encode an IPS integer (unsigned, most significant byte first);
    # bits that don't fit are dropped
    return bytes((n >> s) & 0xff for s in range((byteCnt - 1) * 8, -8, -8))

def format_hex(value, byteCnt=1):
    # e.g. (0x1f, 3) -> "0x00001f"; bytes are decoded first
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = decode_int(value)
    return f"0x{value:0{2*byteCnt}x}"

def default_log(message):
    # diagnostics go to stderr
    print(message, file=sys.stderr)

def file_checksums(data):
    # return (CRC32, MD5, SHA-256) of data as hexadecimal strings
    return (
        format(crc32(data), "08x"),
        hashlib.md5(data).hexdigest(),
        hashlib.sha256(data).hexdigest(),
    )

def print_checksums(descr, data):
    (crc, md5, sha256) = file_checksums(data)
    print(f"{descr}: CRC32={crc}, MD5={md5}, SHA-256={sha256}.")

def cli_log(verbose):
    # return a diagnostic sink for the command line tools: warnings always
    # go to stderr, other messages to stdout in verbose mode only

    def log(message):
        if message.startswith("Warning:"):
            print(message, file=sys.stderr)
        elif verbose:
            print(message)

    return log
