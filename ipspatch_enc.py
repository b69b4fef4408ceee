import argparse, os, sys, time
from ipspatch_common import (
    IPS_HEADER, IPS_TRAILER, IPS_MAX_OFFSET, IPS_MAX_HUNK_LEN,
    IPS_HUNK_OVERHEAD, IPS_RLE_HUNK_SIZE, __version__,
    SizeMismatchError, IpsError,
    encode_int, format_hex, default_log, cli_log, print_checksums,
)
from ipspatch import ips_hunk_stats

# a hunk can't start here: decoders would take its offset for the trailer
IPS_EOF_OFFSET = 0x454f46

def parse_args(argv=None):
    # parse command line arguments

    parser = argparse.ArgumentParser(
        description="IPS Patch Creator. Creates an IPS patch from the "
        "differences of two files of the same size. Has the 'EOF' address "
        "(0x454f46) bug (a warning is printed if it occurs)."
    )

    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Print every hunk, statistics and checksums (CRC32 of zlib "
        "variety, MD5, SHA-256; all hexadecimal)."
    )
    parser.add_argument(
        "--no-rle", action="store_true",
        help="Don't create RLE hunks. Makes the patch larger."
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Create the patch but don't write patch_file."
    )
    parser.add_argument(
        "--allow-overwrite", action="store_true",
        help="Overwrite patch_file if it exists."
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        "orig_file", help="Original file to read."
    )
    parser.add_argument(
        "modified_file",
        help="File to read and compare against orig_file. Must be the same "
        "size as orig_file."
    )
    parser.add_argument(
        "patch_file", nargs="?",
        help="Patch file to write (.ips). Default: name of modified_file "
        "with extension .ips."
    )

    args = parser.parse_args(argv)

    if args.patch_file is None:
        args.patch_file = os.path.splitext(args.modified_file)[0] + ".ips"

    if not os.path.isfile(args.orig_file):
        sys.exit("Original file not found.")
    if not os.path.isfile(args.modified_file):
        sys.exit("Modified file not found.")
    if os.path.abspath(args.patch_file) in (
        os.path.abspath(args.orig_file), os.path.abspath(args.modified_file)
    ):
        sys.exit("Refusing to overwrite an input file.")
    if os.path.exists(args.patch_file) \
    and not (args.allow_overwrite or args.dry_run):
        sys.exit("Output file already exists.")

    return args

def get_byte_ranges(srcData, dstData):
    # return contiguous ranges of changed bytes as dicts:
    # {"offset": int, "data": bytearray, "canRle": bool};
    # a range stays RLE-capable while all its bytes are identical; a run of
    # 2+ identical bytes followed by a different byte ends the range;
    # e.g. changed bytes AABCC -> AA, BCC

    ranges = []
    current = None  # range being extended (None = none)

    for (pos, (srcByte, dstByte)) in enumerate(zip(srcData, dstData)):
        if srcByte == dstByte:
            current = None
            continue
        if current is not None:
            if len(current["data"]) == IPS_MAX_HUNK_LEN:
                current = None
            elif current["canRle"] and current["data"][0] != dstByte:
                if len(current["data"]) > 1:
                    current = None
                else:
                    current["canRle"] = False
        if current is None:
            current = {"offset": pos, "data": bytearray(), "canRle": True}
            ranges.append(current)
        current["data"].append(dstByte)

    return ranges

def use_rle(byteRange):
    # is an RLE hunk no larger than a non-RLE one? (runs of 2+ bytes)
    return byteRange["canRle"] \
    and IPS_RLE_HUNK_SIZE <= IPS_HUNK_OVERHEAD + len(byteRange["data"])

def get_encoded_size(byteRange):
    if use_rle(byteRange):
        return IPS_RLE_HUNK_SIZE
    return IPS_HUNK_OVERHEAD + len(byteRange["data"])

def optimize_byte_ranges(byteRanges):
    # merge each range with the previous one if there's no gap between them
    # and the merged range doesn't take more space; return new list

    optimized = []

    for byteRange in byteRanges:
        if optimized:
            prev = optimized[-1]
            if prev["offset"] + len(prev["data"]) == byteRange["offset"] \
            and len(prev["data"]) + len(byteRange["data"]) \
            <= IPS_MAX_HUNK_LEN:
                merged = {
                    "offset": prev["offset"],
                    "data": prev["data"] + byteRange["data"],
                    "canRle": False,
                }
                if get_encoded_size(merged) \
                <= get_encoded_size(prev) + get_encoded_size(byteRange):
                    optimized[-1] = merged
                    continue
        optimized.append(byteRange)

    return optimized

def encode_byte_range(byteRange, useRle=True):
    # encode one range as an IPS hunk; return bytes

    (offset, data) = (byteRange["offset"], byteRange["data"])
    if useRle and use_rle(byteRange):
        return b"".join((
            encode_int(offset, 3),
            encode_int(0, 2),
            encode_int(len(data), 2),
            data[:1],
        ))
    return encode_int(offset, 3) + encode_int(len(data), 2) + bytes(data)

def ips_generate_patch(byteRanges, log, useRle):
    # generate IPS patch data for byte ranges

    yield IPS_HEADER

    for byteRange in byteRanges:
        (offset, data) = (byteRange["offset"], byteRange["data"])
        if offset == IPS_EOF_OFFSET:
            log(
                f"Warning: hunk at offset {format_hex(offset, 3)} will be "
                "read as end of patch!"
            )
        if useRle and use_rle(byteRange):
            log(
                f"Write {format_hex(data[0])} for {len(data)} bytes at offset "
                f"{format_hex(offset, 3)}"
            )
        else:
            log(f"Write {len(data)} bytes at offset {format_hex(offset, 3)}")
        yield encode_byte_range(byteRange, useRle)

    yield IPS_TRAILER

def create_ips(srcData, dstData, log=default_log, useRle=True):
    # create an IPS patch from the differences of srcData and dstData;
    # return patch data; raise SizeMismatchError if sizes differ

    if len(srcData) != len(dstData):
        raise SizeMismatchError(
            f"Source file size {len(srcData)} does not match target file "
            f"size {len(dstData)}."
        )

    if len(dstData) > IPS_MAX_OFFSET + 1:
        log(
            f"Warning: file exceeds {IPS_MAX_OFFSET + 1} bytes; changes past "
            f"offset {format_hex(IPS_MAX_OFFSET, 3)} can't be addressed!"
        )

    byteRanges = optimize_byte_ranges(get_byte_ranges(srcData, dstData))
    return b"".join(ips_generate_patch(byteRanges, log, useRle))

def main(argv=None):
    startTime = time.time()
    args = parse_args(argv)

    # read input files
    try:
        with open(args.orig_file, "rb") as handle:
            origData = handle.read()
        with open(args.modified_file, "rb") as handle:
            modifiedData = handle.read()
    except OSError:
        sys.exit("Error reading input files.")

    if args.verbose:
        print_checksums("Original file", origData)
        print_checksums("Modified file", modifiedData)

    # create patch data
    try:
        patch = create_ips(
            origData, modifiedData, log=cli_log(args.verbose),
            useRle=not args.no_rle
        )
    except IpsError as e:
        sys.exit(str(e))

    if args.verbose:
        print("Number of hunks and bytes by type:")
        for (descr, (hunkCnt, byteCnt)) in zip(
            ("non-RLE", "RLE"), ips_hunk_stats(patch)
        ):
            print(f"{byteCnt} bytes in {hunkCnt} {descr} hunks.")
        print_checksums("Patch file", patch)

    if args.dry_run:
        print(f"Dry run; not writing {args.patch_file}.")
    else:
        # write patch data
        try:
            with open(args.patch_file, "wb") as handle:
                handle.seek(0)
                handle.write(patch)
        except OSError:
            sys.exit("Error writing output file.")

    if args.verbose:
        print("Time:", format(time.time() - startTime, ".1f"), "s")

if __name__ == "__main__":
    main()
