"""
Resolution of the character encoding used to decode subprocess output.
"""

import codecs
import functools
import locale
import logging
import sys

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "utf-8"


def _normalize(encoding: str | None) -> str | None:
    if not encoding:
        return None
    try:
        return codecs.lookup(encoding).name
    except LookupError:
        logger.debug(f"Unknown encoding '{encoding}', ignoring")
        return None


@functools.lru_cache(maxsize=1)
def get_system_encoding() -> str:
    """The encoding child processes are expected to write with.

    POSIX systems almost always emit UTF-8 regardless of the reported locale
    once LANG is unset, so only an explicit non-ascii locale overrides it.
    On Windows the active ANSI code page is used.
    """
    if sys.platform == "win32":
        return _normalize(locale.getpreferredencoding(False)) or DEFAULT_ENCODING

    preferred = _normalize(locale.getpreferredencoding(False))
    if preferred and preferred != "ascii":
        return preferred
    return DEFAULT_ENCODING


def get_incremental_decoder(encoding: str | None = None) -> codecs.IncrementalDecoder:
    """A streaming decoder that survives multi-byte sequences split across chunks."""
    name = encoding or get_system_encoding()
    try:
        decoder_cls = codecs.getincrementaldecoder(name)
    except LookupError:
        decoder_cls = codecs.getincrementaldecoder(DEFAULT_ENCODING)
    return decoder_cls(errors="replace")
