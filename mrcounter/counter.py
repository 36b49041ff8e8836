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
"""Efficiently compute counts and distinct counts in one MapReduce pass.

This performs something similar to these two SQL queries at once::

    SELECT count(item), count(distinct item)
        FROM input GROUP BY group_type_id, group

    SELECT item, count(*)
        FROM input GROUP BY group_type_id, group, item

The result of the first query goes to the named output
:py:data:`COUNT_DISTINCT_FILE`, and the result of the second to
:py:data:`COUNT_FILE`:

- ``COUNTFILE``: ``[group_type_id, group, item] -> count``
- ``COUNTDISTINCTFILE``: ``[group_type_id, group] -> [count, distinct]``

Mappers emit ``[group_type_id, group, item] -> [item, count]`` pairs (see
:py:class:`CountEmitter`). The runtime partitions them by
``(group_type_id, group)``, and sorts them by
``(group_type_id, group, item)``. :py:class:`CountCombiner` can add up
counts for identical keys before they are shuffled, and
:py:class:`GroupedCountReducer` sees each group's items in sorted order, so
it can count items and distinct items without remembering which items it
has already seen.

Groups and items are compared only as bytes; see
:py:mod:`mrcounter.protocol` for the contract that codecs must honor.
"""
import logging
import struct
import zlib
from collections import namedtuple

from mrcounter.conf import parse_min_counts
from mrcounter.counters import INPUT_PAIRS
from mrcounter.counters import INPUT_PAIRS_TOTAL_COUNT
from mrcounter.counters import OUT_NUM_GROUPS
from mrcounter.counters import OUT_NUM_ITEMS
from mrcounter.counters import OUT_TOTAL_DISTINCTS
from mrcounter.counters import OUT_TOTAL_ITEMS
from mrcounter.counters import counter_group_for
from mrcounter.protocol import SerializationContractViolation
from mrcounter.protocol import StandardJSONCodec

log = logging.getLogger(__name__)

#: named output with the count for each item in a group, and so the list
#: of distinct items in each group
COUNT_FILE = 'COUNTFILE'

#: named output with the total count and distinct item count for each group
COUNT_DISTINCT_FILE = 'COUNTDISTINCTFILE'

_INT32_MIN = -2 ** 31
_INT32_MAX = 2 ** 31 - 1


def _check_group_type_id(group_type_id):
    if isinstance(group_type_id, bool) or not isinstance(group_type_id, int):
        raise TypeError('group_type_id must be an int, not %r' %
                        (group_type_id,))
    if not _INT32_MIN <= group_type_id <= _INT32_MAX:
        raise ValueError('group_type_id out of 32-bit range: %d' %
                         group_type_id)


def _check_bytes(name, value):
    if not isinstance(value, bytes):
        raise TypeError('%s must be bytes, not %r' % (name, value))


class CounterKey(namedtuple('CounterKey', ['group_type_id', 'group', 'item'])):
    """Key emitted by mappers: ``(group_type_id, group, item)``.

    *group_type_id* is a 32-bit int that tells you what kind of thing
    *group* and *item* are, so that unrelated counts can share a job.
    *group* and *item* are encoded bytes. *item* is ``b''`` for keys that
    only identify a group.
    """
    __slots__ = ()

    def __new__(cls, group_type_id, group, item=b''):
        _check_group_type_id(group_type_id)
        _check_bytes('group', group)
        _check_bytes('item', item)

        return super(CounterKey, cls).__new__(
            cls, group_type_id, group, item)


class CounterDistinctKey(
        namedtuple('CounterDistinctKey', ['group_type_id', 'group'])):
    """Key of :py:data:`COUNT_DISTINCT_FILE`: ``(group_type_id, group)``."""
    __slots__ = ()

    def __new__(cls, group_type_id, group):
        _check_group_type_id(group_type_id)
        _check_bytes('group', group)

        return super(CounterDistinctKey, cls).__new__(
            cls, group_type_id, group)


class CounterValue(namedtuple('CounterValue', ['item', 'count'])):
    """Value emitted by mappers: the encoded *item* (again, so that the
    reducer doesn't have to get it from the key) and the encoded number of
    times it occurred."""
    __slots__ = ()

    def __new__(cls, item, count):
        _check_bytes('item', item)
        _check_bytes('count', count)

        return super(CounterValue, cls).__new__(cls, item, count)


### partitioning and sorting ###

def group_key(key):
    """Grouping comparator: keys with equal ``group_key()`` go to the same
    call to the reducer."""
    return (key.group_type_id, key.group)


def sort_key(key):
    """Sort comparator: sort by group type and group, then by item. Groups
    and items compare as raw bytes.

    Items of the same group must come out next to each other; the reducer
    relies on it.
    """
    return (key.group_type_id, key.group, key.item)


def partition_for(key, num_partitions):
    """Pick a partition (``0 <= partition < num_partitions``) for *key*
    based only on its group type and group.

    This is a CRC-32 of the bytes, so it's the same in every process
    (unlike :py:func:`hash`).
    """
    if num_partitions < 1:
        raise ValueError('num_partitions must be positive, not %r' %
                         (num_partitions,))

    data = struct.pack('>i', key.group_type_id) + key.group
    return (zlib.crc32(data) & 0x7fffffff) % num_partitions


### counts ###

# partial counts are always JSON ints, whatever codec groups and items use
_COUNT_CODEC = StandardJSONCodec()


def encode_count(count):
    return _COUNT_CODEC.encode(count)


def decode_count(data):
    """Decode a partial count, raising
    :py:class:`~mrcounter.protocol.SerializationContractViolation` if it's
    not a positive integer."""
    try:
        count = _COUNT_CODEC.decode(data)
    except Exception as e:
        raise SerializationContractViolation(
            'Cannot decode count %r: %s' % (data, e))

    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise SerializationContractViolation(
            'Count %r decoded to %r, not a positive integer' % (data, count))

    return count


### minimum count ###

class MinimumCountPolicy(object):
    """Minimum number of occurrences an item needs in a group in order to
    be counted, by group type. Group types not mentioned have a minimum of 1
    (everything is counted).

    *min_counts* is a map from group type ID to minimum count; see
    :py:func:`mrcounter.conf.parse_min_counts`. Bad values raise
    :py:class:`~mrcounter.conf.ConfigurationError` right away.
    """
    def __init__(self, min_counts=None):
        self._min_counts = parse_min_counts(min_counts)

    def minimum_for(self, group_type_id):
        return self._min_counts.get(group_type_id, 1)

    def meets(self, group_type_id, count):
        """Does *count* occurrences of an item meet the minimum for
        *group_type_id*?"""
        return count >= self.minimum_for(group_type_id)

    def __repr__(self):
        return '%s(%r)' % (self.__class__.__name__, self._min_counts)


### mapper side ###

class CountEmitter(object):
    """Turns ``(group_type_id, group, item, times)`` into one
    ``(CounterKey, CounterValue)`` pair.

    :param codec: a :py:class:`~mrcounter.protocol.ByteComparableCodec`
    :param write: called with ``(key, value)`` for each pair
    :param increment_counter: called with ``(group, counter, amount)``
    :param strict: if true, check that *codec* round-trips every group and
                   item (slower, but catches codecs that break the contract)
    """
    def __init__(self, codec, write, increment_counter=None, strict=False):
        self._codec = codec
        self._write = write
        self._counter_func = increment_counter
        self._strict = strict

    def increment_counter(self, group, counter, amount=1):
        if self._counter_func:
            self._counter_func(group, counter, amount)

    def emit(self, group_type_id, group, item, times=1):
        """Count *item* *times* times in *group*.

        To count an item more than once, pass *times* rather than calling
        this in a loop; a single pair is written either way.
        """
        if isinstance(times, bool) or not isinstance(times, int):
            raise TypeError('times must be an integer, not %r' % (times,))
        if times < 1:
            raise ValueError('times must be positive, not %d' % times)

        if self._strict:
            group_bytes = self._codec.check_contract(group)
            item_bytes = self._codec.check_contract(item)
        else:
            group_bytes = self._codec.encode(group)
            item_bytes = self._codec.encode(item)

        key = CounterKey(group_type_id, group_bytes, item_bytes)
        value = CounterValue(item_bytes, encode_count(times))

        counter_group = counter_group_for(group_type_id)
        self.increment_counter(counter_group, INPUT_PAIRS, 1)
        self.increment_counter(counter_group, INPUT_PAIRS_TOTAL_COUNT, times)

        self._write(key, value)


### combiner ###

def combine_counts(key, values):
    """Add up the partial counts in *values* (which all have the same
    *key*), and return a single :py:class:`CounterValue`.

    Addition doesn't care how values are batched, so this can be applied
    any number of times to any subset of the values for a key.
    """
    total = 0
    num_values = 0

    for value in values:
        total += decode_count(value.count)
        num_values += 1

    if not num_values:
        raise ValueError('No values to combine for %r' % (key,))

    return CounterValue(key.item, encode_count(total))


class CountCombiner(object):
    """Receives ``CounterKey -> [CounterValue, ...]`` for identical keys and
    yields one ``(CounterKey, CounterValue)`` with the sum of the counts,
    to cut down on the data sent through the shuffle."""

    def combiner(self, key, values):
        yield key, combine_counts(key, values)


### reducer ###

class GroupedCountReducer(object):
    """Receives all the values for a ``(group_type_id, group)``, sorted by
    item, and writes:

    - :py:data:`COUNT_FILE`: ``CounterKey -> count``, for each item
    - :py:data:`COUNT_DISTINCT_FILE`:
      ``CounterDistinctKey -> (count, distinct_count)``, for the group

    Items that don't meet *policy*'s minimum count are left out of both
    outputs (they don't contribute to the group's total count either). A
    group with no items that meet the minimum produces no output at all.

    :param policy: a :py:class:`MinimumCountPolicy` (default: count
                   everything)
    :param increment_counter: called with ``(group, counter, amount)``
    """
    def __init__(self, policy=None, increment_counter=None):
        self._policy = policy or MinimumCountPolicy()
        self._increment_counter = increment_counter

    def reduce(self, key, values, outputs):
        """Count one group.

        :param key: a :py:class:`CounterKey` from the group (its item is
                    ignored)
        :param values: :py:class:`CounterValue`\\ s for the group, in item
                       order
        :param outputs: object with a ``write(name, key, value)`` method
        """
        group_type_id = key.group_type_id
        group = key.group

        total_count = 0
        distinct_count = 0

        # items come sorted, so all the values for an item are next to
        # each other. The item we're counting is identified by its bytes.
        signature = None
        item_count = 0

        for value in values:
            count = decode_count(value.count)

            if signature is None:
                signature = value.item

            elif value.item != signature:
                if self._close_item(
                        group_type_id, group, signature, item_count, outputs):
                    total_count += item_count
                    distinct_count += 1

                item_count = 0
                signature = value.item

            item_count += count

        # still have to close the last item
        if signature is not None:
            if self._close_item(
                    group_type_id, group, signature, item_count, outputs):
                total_count += item_count
                distinct_count += 1

        if total_count > 0:
            outputs.write(COUNT_DISTINCT_FILE,
                          CounterDistinctKey(group_type_id, group),
                          (total_count, distinct_count))

            self._count(group_type_id, OUT_TOTAL_DISTINCTS, distinct_count)
            self._count(group_type_id, OUT_NUM_GROUPS, 1)

    def reduce_source(self, source, outputs):
        """Run :py:meth:`reduce` on every run of a
        :py:class:`~mrcounter.sim.SortedGroupedSource`."""
        for key, values in source.runs():
            self.reduce(key, values, outputs)

    def _close_item(self, group_type_id, group, item, item_count, outputs):
        """Write the count for *item* if it meets the minimum count.
        Return ``True`` if it did."""
        if not self._policy.meets(group_type_id, item_count):
            return False

        outputs.write(COUNT_FILE,
                      CounterKey(group_type_id, group, item),
                      item_count)

        self._count(group_type_id, OUT_TOTAL_ITEMS, item_count)
        self._count(group_type_id, OUT_NUM_ITEMS, 1)

        return True

    def _count(self, group_type_id, counter, amount):
        if self._increment_counter:
            self._increment_counter(
                counter_group_for(group_type_id), counter, amount)
