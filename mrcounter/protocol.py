# Copyright 2019 Yelp and Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Codecs and protocols.

*Codecs* turn group and item values into the bytes that the counting engine
sorts, partitions and compares. The engine never deserializes to decide
whether two items are the same, so every codec must honor this contract:

1. If ``A == B`` then ``encode(A) == encode(B)``
2. If ``encode(A) == encode(B)`` then
   ``decode(encode(A)) == decode(encode(B))``

If it doesn't, distinct counts are silently wrong. For example, the JSON
codecs encode ``1``, ``1.0`` and ``True`` differently even though Python
considers them equal; don't mix them in the same group or item.

*Protocols* read and write lines of tab-separated keys and values, for the
input of mappers and for output files.
"""
import json

import ujson

from mrcounter.conf import ConfigurationError
from mrcounter.util import safeeval


class SerializationContractViolation(Exception):
    """Bytes that should have come from a codec can't be decoded, or
    decode to something they shouldn't. This means data is corrupt or the
    codec doesn't honor the byte-equality contract; it's never transient.
    """
    pass


### Codecs ###

class ByteComparableCodec(object):
    """Base class for codecs. Redefine :py:meth:`encode` and
    :py:meth:`decode`."""

    def encode(self, value):
        """Encode *value* as bytes."""
        raise NotImplementedError

    def decode(self, data):
        """Decode bytes produced by :py:meth:`encode`."""
        raise NotImplementedError

    def output_protocol(self):
        """Protocol for writing decoded groups and items to output files.
        Default is :py:data:`JSONProtocol`."""
        return JSONProtocol()

    def check_contract(self, value):
        """Make sure that *value* survives a round trip through the codec
        byte-for-byte, and return its encoding.

        Raises :py:class:`SerializationContractViolation` if it doesn't.
        """
        encoded = self.encode(value)

        try:
            reencoded = self.encode(self.decode(encoded))
        except Exception as e:
            raise SerializationContractViolation(
                '%s cannot round-trip %r: %s' % (
                    self.__class__.__name__, value, e))

        if reencoded != encoded:
            raise SerializationContractViolation(
                '%s encodes %r inconsistently: %r != %r' % (
                    self.__class__.__name__, value, encoded, reencoded))

        return encoded


class StandardJSONCodec(ByteComparableCodec):
    """Encode values as canonical JSON (sorted keys, no extra whitespace)
    with Python's built-in JSON library."""

    def encode(self, value):
        return json.dumps(
            value, sort_keys=True, separators=(',', ':')).encode('utf_8')

    def decode(self, data):
        # Python 3's json module does not accept bytes before 3.6
        return json.loads(data.decode('utf_8'))


class UltraJSONCodec(ByteComparableCodec):
    """Encode values as JSON with sorted keys using the :py:mod:`ujson`
    library."""

    def encode(self, value):
        return ujson.dumps(value, sort_keys=True).encode('utf_8')

    def decode(self, data):
        # ujson can handle bytes
        return ujson.loads(data)


JSONCodec = UltraJSONCodec


class ReprCodec(ByteComparableCodec):
    """Encode values with :py:func:`repr`.

    This only works for basic types (we use
    :py:func:`mrcounter.util.safeeval`).

    .. warning::

        The repr of a set or a dict depends on insertion order, which breaks
        the byte-equality contract. Use it for scalars and tuples.
    """

    def encode(self, value):
        return repr(value).encode('utf_8')

    def decode(self, data):
        return safeeval(data)

    def output_protocol(self):
        return ReprProtocol()


class RawCodec(ByteComparableCodec):
    """Values are already bytes; pass them through untouched."""

    def encode(self, value):
        if not isinstance(value, bytes):
            raise TypeError('RawCodec only encodes bytes, not %r' % (value,))
        return value

    def decode(self, data):
        return data

    def output_protocol(self):
        # JSON has no way to write bytes
        return ReprProtocol()


_CODECS = {
    'json': JSONCodec,
    'raw': RawCodec,
    'repr': ReprCodec,
    'standard_json': StandardJSONCodec,
    'ujson': UltraJSONCodec,
}


def codec_for_name(name):
    """Return a new instance of the codec called *name* (e.g. ``'json'``).

    If *name* is already a codec, return it as-is.
    """
    if isinstance(name, ByteComparableCodec):
        return name

    try:
        return _CODECS[name]()
    except (KeyError, TypeError):
        raise ConfigurationError(
            'Unknown codec %r (choose from: %s)' % (
                name, ', '.join(sorted(_CODECS))))


### Protocols ###

class _KeyCachingProtocol(object):
    """Protocol that caches the last decoded key."""
    _last_key_encoded = None
    _last_key_decoded = None

    def _loads(self, value):
        """Decode a single key/value, and return it."""
        raise NotImplementedError

    def _dumps(self, value):
        """Encode a single key/value, and return it."""
        raise NotImplementedError

    def read(self, line):
        """Decode a line of input.

        :type line: bytes
        :param line: A line of raw input, without trailing newline.

        :return: A tuple of ``(key, value)``."""

        raw_key, raw_value = line.split(b'\t', 1)

        if raw_key != self._last_key_encoded:
            self._last_key_encoded = raw_key
            self._last_key_decoded = self._loads(raw_key)
        return (self._last_key_decoded, self._loads(raw_value))

    def write(self, key, value):
        """Encode a key and value.

        :rtype: bytes
        :return: A line, without trailing newline."""
        return self._dumps(key) + b'\t' + self._dumps(value)


class StandardJSONProtocol(_KeyCachingProtocol):
    """Encode ``(key, value)`` as two JSONs separated by a tab, using
    Python's built-in JSON library.
    """
    def _loads(self, value):
        return json.loads(value.decode('utf_8'))

    def _dumps(self, value):
        return json.dumps(value).encode('utf_8')


class UltraJSONProtocol(_KeyCachingProtocol):
    """Encode ``(key, value)`` as two JSONs separated by a tab, using the
    :py:mod:`ujson` library.
    """
    def _loads(self, value):
        return ujson.loads(value)

    def _dumps(self, value):
        return ujson.dumps(value).encode('utf_8')


class UltraJSONValueProtocol(object):
    """Encode ``value`` as JSON and discard ``key`` (``key`` is read
    in as ``None``).
    """
    def read(self, line):
        return (None, ujson.loads(line))

    def write(self, key, value):
        return ujson.dumps(value).encode('utf_8')


JSONProtocol = UltraJSONProtocol
JSONValueProtocol = UltraJSONValueProtocol


class RawProtocol(object):
    """Encode ``(key, value)`` as ``key`` and ``value`` separated by
    a tab (``key`` and ``value`` should be bytestrings).

    If ``key`` or ``value`` is ``None``, don't include a tab. When decoding a
    line with no tab in it, ``value`` will be ``None``.
    """
    def read(self, line):
        key_value = line.split(b'\t', 1)
        if len(key_value) == 1:
            key_value.append(None)

        return tuple(key_value)

    def write(self, key, value):
        return b'\t'.join(x for x in (key, value) if x is not None)


class RawValueProtocol(object):
    """Read in a line as ``(None, line)``. Write out ``(key, value)``
    as ``value``. ``value`` must be bytes.

    The default way for a mapper to read its input.
    """
    def read(self, line):
        return (None, line)

    def write(self, key, value):
        return value


class ReprProtocol(_KeyCachingProtocol):
    """Encode ``(key, value)`` as two reprs separated by a tab.

    Useful for output of jobs whose groups or items are bytes, which JSON
    can't represent.
    """
    def _loads(self, value):
        return safeeval(value)

    def _dumps(self, value):
        return repr(value).encode('utf_8')
