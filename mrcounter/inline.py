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
"""Run a count job inline by running all mappers, combiners and reducers
through the same process. Useful for testing, and for data that fits in
memory."""
import itertools
import logging

from mrcounter.conf import ConfigurationError
from mrcounter.conf import combine_dicts
from mrcounter.conf import combine_opts
from mrcounter.conf import load_opts_from_mrcounter_confs
from mrcounter.conf import min_counts_from_jobconf
from mrcounter.counter import COUNT_DISTINCT_FILE
from mrcounter.counter import COUNT_FILE
from mrcounter.counter import CountCombiner
from mrcounter.counter import CountEmitter
from mrcounter.counter import GroupedCountReducer
from mrcounter.counter import MinimumCountPolicy
from mrcounter.counter import partition_for
from mrcounter.counter import sort_key
from mrcounter.counters import _format_counters
from mrcounter.counters import _sum_counters
from mrcounter.counters import increment_counter
from mrcounter.job import MRCounterMapper
from mrcounter.protocol import codec_for_name
from mrcounter.sim import FileOutputs
from mrcounter.sim import InMemorySortedSource
from mrcounter.sim import MemoryOutputs
from mrcounter.sim import _clear_output_dir
from mrcounter.sim import _split_records
from mrcounter.util import expand_path
from mrcounter.util import read_input

log = logging.getLogger(__name__)


class InlineCounterRunner(object):
    """Counts items and distinct items in the same process.

    Options come from the ``inline`` section of :file:`mrcounter.conf` (see
    :py:mod:`mrcounter.conf`), overridden by keyword arguments:

    :param codec: name of a codec (see
                  :py:func:`~mrcounter.protocol.codec_for_name`) or a codec
                  instance. Default ``'json'``.
    :param combiner: add up counts after each map task. Default ``True``.
    :param min_counts: map from group type ID to minimum count
    :param jobconf: flat job properties; minimum counts may be set with
                    ``mrcounter.minimum.count.for.group.<group_type_id>``
    :param num_reducers: number of partitions to reduce. Default ``1``.
    :param split_size: max number of records per map task. By default, each
                       input is one map task.
    :param output_dir: write part files here. Named outputs left in it by
                       an earlier run are deleted when the job starts. If
                       not set, output is kept in memory.
    :param strict_codec: check that the codec round-trips every group and
                         item. Default ``False``.

    Unlike a real cluster, exceptions raised by a task are re-raised
    as-is, so you can see the actual stacktrace.
    """
    alias = 'inline'

    OPT_NAMES = set([
        'codec',
        'combiner',
        'jobconf',
        'min_counts',
        'num_reducers',
        'output_dir',
        'split_size',
        'strict_codec',
    ])

    COMBINERS = dict(
        jobconf=combine_dicts,
        min_counts=combine_dicts,
    )

    def __init__(self, conf_paths=None, **kwargs):
        self._opts = self._load_opts(conf_paths, kwargs)

        self._codec = codec_for_name(self._opts['codec'])

        # fail now, not after we've read the input
        self._policy = MinimumCountPolicy(combine_dicts(
            min_counts_from_jobconf(self._opts['jobconf']),
            self._opts['min_counts']))

        self._num_reducers = self._positive_int_opt('num_reducers')
        self._split_size = self._positive_int_opt('split_size')

        self._inputs = []
        self._counters = {}
        self._output = None
        self._output_dir = expand_path(self._opts['output_dir'])

        # used to explain exceptions
        self._error_while = None

    def _default_opts(self):
        return dict(
            codec='json',
            combiner=True,
            num_reducers=1,
            strict_codec=False,
        )

    def _load_opts(self, conf_paths, kwargs):
        conf_opts = [
            self._filter_opts(values, 'config file %s' % path)
            for path, values in load_opts_from_mrcounter_confs(
                self.alias, conf_paths)
        ]

        return combine_opts(
            self.COMBINERS,
            dict((name, None) for name in self.OPT_NAMES),
            self._default_opts(),
            *(conf_opts + [self._filter_opts(kwargs, 'keyword arguments')]))

    def _filter_opts(self, opts, source):
        """Warn about and drop options we don't recognize."""
        unrecognized = set(opts) - self.OPT_NAMES
        if unrecognized:
            log.warning('ignoring unrecognized options from %s: %s' % (
                source, ', '.join(sorted(unrecognized))))

        return dict((k, v) for k, v in opts.items() if k in self.OPT_NAMES)

    def _positive_int_opt(self, name):
        value = self._opts[name]
        if value is None:
            return None

        if isinstance(value, bool) or not isinstance(value, int) or (
                value < 1):
            raise ConfigurationError(
                '%s must be a positive integer, not %r' % (name, value))

        return value

    def get_opts(self):
        """Get options set for this runner, as a dict."""
        return dict(self._opts)

    ### input ###

    def add_input(self, input, mapper_cls):
        """Add input to be counted by *mapper_cls* (a subclass of
        :py:class:`~mrcounter.job.MRCounterMapper`).

        *input* may be a path (files, directories, globs, ``.gz`` files),
        whose lines are decoded by the mapper's ``INPUT_PROTOCOL``, or an
        iterable of records, each of which is passed to the mapper as
        ``(None, record)``.
        """
        if not (isinstance(mapper_cls, type) and
                issubclass(mapper_cls, MRCounterMapper)):
            raise TypeError('mapper_cls must be a subclass of'
                            ' MRCounterMapper, not %r' % (mapper_cls,))

        self._inputs.append((input, mapper_cls))

    def _read_records(self, input, mapper):
        if isinstance(input, str):
            read = mapper.input_protocol().read
            for line in read_input(input):
                yield read(line.rstrip(b'\r\n'))
        else:
            for record in input:
                yield None, record

    ### running ###

    def run(self):
        """Run the job: map, combine, shuffle and reduce."""
        if not self._inputs:
            raise ValueError('no input; call add_input() first')

        self._counters = {}
        self._output = None

        if self._output_dir is not None:
            _clear_output_dir(self._output_dir)

        log.info('Running count job with %d input(s), %d reducer(s)...' % (
            len(self._inputs), self._num_reducers))

        task_counters = []

        try:
            map_output = self._run_mappers_and_combiners(task_counters)

            partitions = self._partition(map_output)

            self._run_reducers(partitions, task_counters)
        except Exception:
            self._log_cause_of_error()
            raise
        finally:
            self._counters = _sum_counters(*task_counters)
            self._log_counters()

    def _run_mappers_and_combiners(self, task_counters):
        map_output = []
        task_num = 0

        for input, mapper_cls in self._inputs:
            mapper = mapper_cls()
            records = self._read_records(input, mapper)

            for split in _split_records(records, self._split_size):
                self._error_while = 'mapper %d (%s)' % (
                    task_num, mapper_cls.__name__)
                log.debug('running %s' % self._error_while)

                counters = {}
                task_counters.append(counters)

                pairs = self._run_mapper(mapper_cls, split, counters)

                if self._opts['combiner']:
                    self._error_while = 'combiner %d' % task_num
                    pairs = self._run_combiner(pairs)

                map_output.extend(pairs)
                task_num += 1

        self._error_while = None
        return map_output

    def _run_mapper(self, mapper_cls, records, counters):
        pairs = []

        def write(key, value):
            pairs.append((key, value))

        def count(group, counter, amount):
            increment_counter(counters, group, counter, amount)

        emitter = CountEmitter(self._codec, write, count,
                               strict=self._opts['strict_codec'])

        mapper_cls(emitter).run_mapper(records)

        return pairs

    def _run_combiner(self, pairs):
        """Sort one map task's output, and combine the values for each
        identical key."""
        combiner = CountCombiner()

        sorted_pairs = sorted(pairs, key=lambda k_v: sort_key(k_v[0]))

        combined = []
        for key, kv_pairs in itertools.groupby(
                sorted_pairs, key=lambda k_v: k_v[0]):
            values = (v for k, v in kv_pairs)
            combined.extend(combiner.combiner(key, values))

        return combined

    def _partition(self, pairs):
        partitions = [[] for _ in range(self._num_reducers)]

        for key, value in pairs:
            partitions[partition_for(key, self._num_reducers)].append(
                (key, value))

        return partitions

    def _run_reducers(self, partitions, task_counters):
        if self._output_dir is None:
            output = dict((name, []) for name in (COUNT_FILE,
                                                   COUNT_DISTINCT_FILE))
        else:
            output = None

        for task_num, pairs in enumerate(partitions):
            self._error_while = 'reducer %d' % task_num
            log.debug('running reducer %d on %d pair(s)' % (
                task_num, len(pairs)))

            counters = {}
            task_counters.append(counters)

            reducer = GroupedCountReducer(
                self._policy,
                lambda group, counter, amount: increment_counter(
                    counters, group, counter, amount))

            source = InMemorySortedSource(pairs)

            with self._outputs_for_task(task_num, output) as outputs:
                reducer.reduce_source(source, outputs)

        self._error_while = None
        self._output = output

    def _outputs_for_task(self, task_num, output):
        if self._output_dir is None:
            return MemoryOutputs(output)
        else:
            return FileOutputs(self._output_dir, task_num, self._codec)

    def _log_cause_of_error(self):
        if self._error_while:
            log.error('\nError while running %s\n' % self._error_while)

    def _log_counters(self):
        if self._counters:
            log.info('\n%s\n' % _format_counters(self._counters))

    ### output ###

    def counters(self):
        """Counters from the last run, as a map from group to counter to
        amount."""
        return self._counters

    def raw_counts(self):
        """Yield ``(CounterKey, count)`` for each item from the last run.

        Only available if *output_dir* isn't set.
        """
        for key, count in self._rows(COUNT_FILE):
            yield key, count

    def raw_distinct_counts(self):
        """Yield ``(CounterDistinctKey, (count, distinct_count))`` for each
        group from the last run.

        Only available if *output_dir* isn't set.
        """
        for key, value in self._rows(COUNT_DISTINCT_FILE):
            yield key, value

    def counts(self):
        """Yield ``((group_type_id, group, item), count)`` for each item,
        with *group* and *item* decoded."""
        decode = self._codec.decode
        for key, count in self.raw_counts():
            yield (key.group_type_id, decode(key.group),
                   decode(key.item)), count

    def distinct_counts(self):
        """Yield ``((group_type_id, group), (count, distinct_count))`` for
        each group, with *group* decoded."""
        decode = self._codec.decode
        for key, value in self.raw_distinct_counts():
            yield (key.group_type_id, decode(key.group)), value

    def _rows(self, name):
        if self._output is None:
            if self._output_dir is not None:
                raise ValueError(
                    'output was written to %s' % self._output_dir)
            raise ValueError('run() has not completed')

        return iter(self._output[name])

    ### cleanup ###

    def cleanup(self):
        """Forget inputs and in-memory output from the last run."""
        self._inputs = []
        self._output = None

    def __enter__(self):
        return self

    def __exit__(self, type, value, traceback):
        self.cleanup()
