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
"""Class to inherit your counting mappers from."""
import logging

from mrcounter.protocol import RawValueProtocol

log = logging.getLogger(__name__)


def _im_func(f):
    """Get at the underlying function belonging to a method."""
    if hasattr(f, '__func__'):
        return f.__func__
    else:
        return f


class MRCounterMapper(object):
    """Base class for mappers that feed the counter. Re-define
    :py:meth:`mapper`, and call :py:meth:`emit` from it for each
    ``(group, item)`` you want counted::

        class MRPageVisits(MRCounterMapper):

            def mapper(self, _, line):
                user, url = line.decode('utf_8').split('\\t')
                self.emit(1, user, url)

    After the run, you'll have:

    - ``[group_type_id, group, item] -> count``
    - ``[group_type_id, group] -> [count, distinct_item_count]``

    *group_type_id* tells you what kind of thing the group and the item are,
    since counts for different kinds of groups can be computed in the same
    job.

    *emitter* is a :py:class:`~mrcounter.counter.CountEmitter`; runners
    set it up for you.
    """
    #: Protocol used to decode lines when this mapper's input is a path.
    #: When input is a list of records, each record is passed to
    #: :py:meth:`mapper` as ``(None, record)``.
    INPUT_PROTOCOL = RawValueProtocol

    def __init__(self, emitter=None):
        self.emitter = emitter

    def mapper(self, key, value):
        """Re-define this to call :py:meth:`emit` for each item in a
        record. Return value is ignored."""
        raise NotImplementedError

    def mapper_init(self):
        """Re-define this to define an action to run before the mapper
        processes any input."""
        raise NotImplementedError

    def mapper_final(self):
        """Re-define this to define an action to run after the mapper
        reaches the end of input. You may call :py:meth:`emit` from here
        (e.g. to emit totals you kept in an instance variable)."""
        raise NotImplementedError

    def input_protocol(self):
        """Instance of the protocol to use to read input lines."""
        return self.INPUT_PROTOCOL()

    def emit(self, group_type_id, group, item, times=1):
        """Count *item* in *group*, *times* times (default 1).

        Use *times* rather than calling this in a loop; either way, it
        writes a single pair.
        """
        if self.emitter is None:
            raise ValueError('mapper has no emitter; run it with a runner')

        self.emitter.emit(group_type_id, group, item, times)

    def increment_counter(self, group, counter, amount=1):
        """Increment a counter (see :py:mod:`mrcounter.counters`)."""
        if self.emitter is None:
            raise ValueError('mapper has no emitter; run it with a runner')

        self.emitter.increment_counter(group, counter, amount)

    def run_mapper(self, records):
        """Run :py:meth:`mapper_init`, :py:meth:`mapper` for each
        ``(key, value)`` in *records*, and :py:meth:`mapper_final`, skipping
        the ones that weren't re-defined."""
        if self._redefined('mapper_init'):
            self.mapper_init()

        for key, value in records:
            self.mapper(key, value)

        if self._redefined('mapper_final'):
            self.mapper_final()

    def _redefined(self, func_name):
        return (_im_func(getattr(self, func_name)) is not
                _im_func(getattr(MRCounterMapper, func_name)))
