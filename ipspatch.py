import argparse, io, os, sys
from ipspatch_common import (
    IPS_HEADER, IPS_TRAILER, __version__,
    MalformedPatchError, UnexpectedEofError, OutOfRangeWriteError, IpsError,
    decode_int, format_hex, default_log, cli_log, file_checksums,
    print_checksums,
)

def parse_args(argv=None):
    # parse command line arguments

    parser = argparse.ArgumentParser(
        description="IPS Patcher. Applies an IPS patch to a file. The "
        "patched file always has the size of the original file."
    )

    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Print every hunk, statistics and checksums (CRC32 of zlib "
        "variety, MD5, SHA-256; all hexadecimal)."
    )
    parser.add_argument(
        "--md5",
        help="Expected MD5 hash of orig_file (hexadecimal). If it doesn't "
        "match, don't patch."
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Apply the patch but don't write output_file."
    )
    parser.add_argument(
        "--allow-overwrite", action="store_true",
        help="Overwrite output_file if it exists."
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        "orig_file", help="Original (unpatched) file to read."
    )
    parser.add_argument(
        "patch_file", help="Patch file (.ips) to read."
    )
    parser.add_argument(
        "output_file", nargs="?",
        help="Patched copy of orig_file to write. Default: name of "
        "patch_file with extension of orig_file, in the directory of "
        "patch_file."
    )

    args = parser.parse_args(argv)

    if args.output_file is None:
        # e.g. "game.nes", "fix/hack.ips" -> "fix/hack.nes"
        args.output_file = (
            os.path.splitext(args.patch_file)[0]
            + os.path.splitext(args.orig_file)[1]
        )

    if not os.path.isfile(args.orig_file):
        sys.exit("Original file not found.")
    if not os.path.isfile(args.patch_file):
        sys.exit("Patch file not found.")
    if os.path.abspath(args.output_file) in (
        os.path.abspath(args.orig_file), os.path.abspath(args.patch_file)
    ):
        sys.exit("Refusing to overwrite an input file.")
    if os.path.exists(args.output_file) \
    and not (args.allow_overwrite or args.dry_run):
        sys.exit("Output file already exists.")

    return args

def read_bytes(n, handle):
    # return n bytes from handle
    pos = handle.tell()
    data = handle.read(n)
    if len(data) < n:
        raise UnexpectedEofError(
            f"Unexpected end of file: tried to read {n} bytes at "
            f"{format_hex(pos, 3)}."
        )
    return data

def ips_generate_hunks(handle):
    # read IPS hunks starting from current position (after header) until the
    # trailer; generate each hunk as (offset, length, is_RLE, data); for RLE
    # hunks, data is one byte

    while True:
        hunkStart = read_bytes(3, handle)
        if hunkStart == IPS_TRAILER:
            break
        offset = decode_int(hunkStart)
        length = decode_int(read_bytes(2, handle))
        if length == 0:
            # RLE
            length = decode_int(read_bytes(2, handle))
            yield (offset, length, True, read_bytes(1, handle))
        else:
            # non-RLE
            yield (offset, length, False, read_bytes(length, handle))

def apply_ips(srcData, patchData, log=default_log):
    # apply IPS patch patchData to srcData, return patched data;
    # srcData is not modified; raise an IpsError if the patch is invalid;
    # note: the patch may not change the size of the data

    data = bytearray(srcData)
    handle = io.BytesIO(patchData)

    # a patch shorter than the header fails the read, not the header check
    if read_bytes(len(IPS_HEADER), handle) != IPS_HEADER:
        raise MalformedPatchError("Patch file does not have PATCH header.")

    for (offset, length, isRle, hunkData) in ips_generate_hunks(handle):
        if offset + length > len(data):
            raise OutOfRangeWriteError(
                f"Source file size is {len(data)} bytes; cannot write "
                f"{length} bytes at offset {format_hex(offset, 3)}."
            )
        if isRle:
            log(
                f"Write {format_hex(hunkData)} for {length} bytes at offset "
                f"{format_hex(offset, 3)}"
            )
            data[offset:offset+length] = length * hunkData
        else:
            log(f"Write {length} bytes at offset {format_hex(offset, 3)}")
            data[offset:offset+length] = hunkData

    log("EOF")
    unprocessed = len(patchData) - handle.tell()
    if unprocessed:
        log(f"{unprocessed} unprocessed patch bytes")

    return bytes(data)

def ips_hunk_stats(patchData):
    # count hunks and output bytes of a valid patch by type; return
    # ((non-RLE hunks, non-RLE bytes), (RLE hunks, RLE bytes))

    hunkCnts = 2 * [0]
    hunkByteCnts = 2 * [0]

    handle = io.BytesIO(patchData)
    handle.seek(len(IPS_HEADER))
    for (offset, length, isRle, hunkData) in ips_generate_hunks(handle):
        hunkCnts[isRle] += 1
        hunkByteCnts[isRle] += length

    return tuple(zip(hunkCnts, hunkByteCnts))

def main(argv=None):
    args = parse_args(argv)

    # read input files
    try:
        with open(args.orig_file, "rb") as handle:
            origData = handle.read()
        with open(args.patch_file, "rb") as handle:
            patchData = handle.read()
    except OSError:
        sys.exit("Error reading input files.")

    if args.md5 is not None \
    and file_checksums(origData)[1] != args.md5.strip().lower():
        sys.exit(f"Original file MD5 mismatch; expected {args.md5}.")

    if args.verbose:
        print_checksums("Original file", origData)
        print_checksums("Patch file", patchData)

    # create patched data
    try:
        patchedData = apply_ips(
            origData, patchData, log=cli_log(args.verbose)
        )
    except IpsError as e:
        sys.exit(str(e))

    if args.verbose:
        print("Number of hunks and bytes by type:")
        for (descr, (hunkCnt, byteCnt)) in zip(
            ("non-RLE", "RLE"), ips_hunk_stats(patchData)
        ):
            print(f"{byteCnt} bytes in {hunkCnt} {descr} hunks.")
        print_checksums("Patched file", patchedData)

    if args.dry_run:
        print(f"Dry run; not writing {args.output_file}.")
        return

    # write patched data
    try:
        with open(args.output_file, "wb") as handle:
            handle.seek(0)
            handle.write(patchedData)
    except OSError:
        sys.exit("Error writing output file.")

if __name__ == "__main__":
    main()
