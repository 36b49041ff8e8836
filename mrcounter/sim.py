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
"""Pieces of a simulated sort-and-shuffle: sorted, grouped record sources
for reducers, and places for reducers to write their output."""
import itertools
import logging
import os
import shutil
from os.path import join

from mrcounter.counter import COUNT_DISTINCT_FILE
from mrcounter.counter import COUNT_FILE
from mrcounter.counter import group_key
from mrcounter.counter import sort_key

log = logging.getLogger(__name__)

#: named outputs written by :py:class:`~mrcounter.counter.GroupedCountReducer`
OUTPUT_NAMES = (COUNT_FILE, COUNT_DISTINCT_FILE)


### record sources ###

class SortedGroupedSource(object):
    """Records for one partition, sorted by key and grouped into runs of
    records from the same ``(group_type_id, group)``.

    Re-implement :py:meth:`begin_run`, :py:meth:`next_record` and
    :py:meth:`end_run` in your subclass.
    """

    def begin_run(self):
        """Start the next run, and return its first key, or ``None`` if
        there are no more runs."""
        raise NotImplementedError

    def next_record(self):
        """Return the next value in the current run, or ``None`` if the run
        is over."""
        raise NotImplementedError

    def end_run(self):
        """Skip whatever is left of the current run."""
        raise NotImplementedError

    def runs(self):
        """Yield ``(key, values)`` for each run, where *values* is a
        generator. Like :py:func:`itertools.groupby`, *values* is only good
        until you ask for the next run."""
        while True:
            key = self.begin_run()
            if key is None:
                return

            yield key, self._values()

            self.end_run()

    def _values(self):
        while True:
            value = self.next_record()
            if value is None:
                return
            yield value


class InMemorySortedSource(SortedGroupedSource):
    """Sort ``(CounterKey, CounterValue)`` pairs in memory and serve them
    up in runs.

    :param pairs: iterable of ``(key, value)``
    :param presorted: if true, use *pairs* in the order given (only
                      consecutive pairs with the same group end up in the
                      same run)
    """
    def __init__(self, pairs, presorted=False):
        pairs = list(pairs)

        if not presorted:
            # sorted() is stable, so values for the same key keep their order
            pairs = sorted(pairs, key=lambda k_v: sort_key(k_v[0]))

        self._pairs = pairs
        self._pos = 0
        self._run_group = None

    def begin_run(self):
        if self._pos >= len(self._pairs):
            self._run_group = None
            return None

        key = self._pairs[self._pos][0]
        self._run_group = group_key(key)
        return key

    def next_record(self):
        if (self._run_group is None or self._pos >= len(self._pairs) or
                group_key(self._pairs[self._pos][0]) != self._run_group):
            return None

        value = self._pairs[self._pos][1]
        self._pos += 1
        return value

    def end_run(self):
        while self.next_record() is not None:
            pass
        self._run_group = None


### outputs ###

class MemoryOutputs(object):
    """Keep rows written by one reduce task in memory, and hand them off
    to *sink* (a map from output name to list) only when the task succeeds.

    Use this as a context manager::

        with MemoryOutputs(sink) as outputs:
            reducer.reduce_source(source, outputs)
    """
    def __init__(self, sink=None):
        if sink is None:
            sink = {}
        for name in OUTPUT_NAMES:
            sink.setdefault(name, [])

        self.sink = sink
        self._rows = None

    def open(self):
        self._rows = dict((name, []) for name in OUTPUT_NAMES)

    def write(self, name, key, value):
        if self._rows is None:
            raise ValueError('write() to outputs that are not open')
        self._rows[name].append((key, value))

    def commit(self):
        for name, rows in self._rows.items():
            self.sink[name].extend(rows)
        self._rows = None

    def abort(self):
        self._rows = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, type, value, traceback):
        if type is None:
            self.commit()
        else:
            self.abort()


class FileOutputs(object):
    """Write rows from one reduce task to
    ``<output_dir>/<name>/part-<task_num>``, one file per named output.

    Groups and items are decoded with *codec* and written with *protocol*
    (by default, *codec*'s
    :py:meth:`~mrcounter.protocol.ByteComparableCodec.output_protocol`), so
    with the JSON codecs lines look like ``[1, "user1", "url1"]<tab>3``.

    Files are written to a temporary name and only renamed into place
    when the task succeeds; if it fails, they are deleted.
    """
    def __init__(self, output_dir, task_num, codec, protocol=None):
        self._output_dir = output_dir
        self._task_num = task_num
        self._codec = codec
        self._protocol = protocol or codec.output_protocol()
        self._files = None

    def part_path(self, name):
        return join(self._output_dir, name, 'part-%05d' % self._task_num)

    def _tmp_path(self, name):
        return join(self._output_dir, name,
                    '_tmp-part-%05d' % self._task_num)

    def open(self):
        self._files = {}
        try:
            for name in OUTPUT_NAMES:
                dir_path = join(self._output_dir, name)
                if not os.path.isdir(dir_path):
                    os.makedirs(dir_path)
                self._files[name] = open(self._tmp_path(name), 'wb')
        except Exception:
            self.abort()
            raise

    def write(self, name, key, value):
        if self._files is None:
            raise ValueError('write() to outputs that are not open')

        decode = self._codec.decode
        if name == COUNT_FILE:
            out_key = [key.group_type_id, decode(key.group), decode(key.item)]
            out_value = value
        else:
            out_key = [key.group_type_id, decode(key.group)]
            out_value = list(value)

        f = self._files[name]
        f.write(self._protocol.write(out_key, out_value))
        f.write(b'\n')

    def commit(self):
        for f in self._files.values():
            f.close()

        for name in self._files:
            os.rename(self._tmp_path(name), self.part_path(name))
            log.debug('wrote %s' % self.part_path(name))

        self._files = None

    def abort(self):
        for name, f in self._files.items():
            f.close()
            os.remove(self._tmp_path(name))

        self._files = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, type, value, traceback):
        if type is None:
            self.commit()
        else:
            self.abort()


def _clear_output_dir(output_dir):
    """Delete named outputs left in *output_dir* by an earlier run, so that
    its part files aren't read along with this run's."""
    for name in OUTPUT_NAMES:
        path = join(output_dir, name)
        if os.path.exists(path):
            log.info('Removing old output %s' % path)
            shutil.rmtree(path)


### splitting ###

def _split_records(records, split_size=None):
    """Given an iterable of records, yield lists of at most *split_size*
    records (or one list of everything, if *split_size* is ``None``).

    Always yields at least one (possibly empty) list.
    """
    if not split_size:
        yield list(records)
        return

    records = iter(records)
    num_splits = 0

    while True:
        split = list(itertools.islice(records, split_size))
        if not split and num_splits:
            return

        yield split
        num_splits += 1

        if len(split) < split_size:
            return
