"""
Every loose object is stored as a zlib stream (RFC 1950): a 2 byte header naming the method and
level, raw deflate blocks, then the adler32 of the uncompressed data, big endian.
Anything written here must stay readable by git itself, so we just use zlib.
"""

import zlib

from errors import CorruptStream


def compress(data, level=zlib.Z_DEFAULT_COMPRESSION):
    return zlib.compress(data, level)


def decompress(data):
    """
    Inflate a whole zlib stream. Unlike zlib.decompress, this refuses input that does not end
    exactly where the stream ends.
    """
    inflater = zlib.decompressobj()
    try:
        result = inflater.decompress(data) + inflater.flush()
    except zlib.error as e:
        raise CorruptStream(str(e)) from e

    if not inflater.eof:
        raise CorruptStream("incomplete or truncated stream")
    if inflater.unused_data:
        raise CorruptStream(f"{len(inflater.unused_data)} trailing bytes after end of stream")

    return result
