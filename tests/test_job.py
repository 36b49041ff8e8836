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

"""Unit testing of MRCounterMapper."""
from mrcounter.counter import CountEmitter
from mrcounter.counters import increment_counter
from mrcounter.job import MRCounterMapper
from mrcounter.protocol import JSONValueProtocol
from mrcounter.protocol import RawValueProtocol
from mrcounter.protocol import StandardJSONCodec

from tests.sandbox import BasicTestCase

CODEC = StandardJSONCodec()


class MRWordsByLetter(MRCounterMapper):

    def mapper(self, _, line):
        for word in line.split():
            self.emit(1, word[0], word)


class MRLengthTotals(MRCounterMapper):
    """Counts lines by length, but only emits at the end."""

    def mapper_init(self):
        self.lengths = {}

    def mapper(self, _, line):
        self.lengths.setdefault(len(line), 0)
        self.lengths[len(line)] += 1

    def mapper_final(self):
        for length, times in sorted(self.lengths.items()):
            self.emit(2, 'lengths', length, times)
        self.increment_counter('lengths', 'distinct', len(self.lengths))


class MRJSONInput(MRCounterMapper):

    INPUT_PROTOCOL = JSONValueProtocol

    def mapper(self, _, record):
        self.emit(3, record['user'], record['url'])


class MRCounterMapperTestCase(BasicTestCase):

    def setUp(self):
        super(MRCounterMapperTestCase, self).setUp()

        self.pairs = []
        self.counters = {}

        def write(key, value):
            self.pairs.append((key, value))

        def count(group, counter, amount):
            increment_counter(self.counters, group, counter, amount)

        self.emitter = CountEmitter(CODEC, write, count)

    def decoded(self):
        return [(k.group_type_id, CODEC.decode(k.group), CODEC.decode(k.item),
                 CODEC.decode(v.count))
                for k, v in self.pairs]

    def test_mapper(self):
        MRWordsByLetter(self.emitter).run_mapper(
            [(None, 'apple avocado'), (None, 'banana')])

        self.assertEqual(self.decoded(), [
            (1, 'a', 'apple', 1),
            (1, 'a', 'avocado', 1),
            (1, 'b', 'banana', 1),
        ])
        self.assertEqual(self.counters, {
            'aggType-1': {'INPUT_PAIRS': 3, 'INPUT_PAIRS_TOTAL_COUNT': 3},
        })

    def test_init_and_final(self):
        MRLengthTotals(self.emitter).run_mapper(
            [(None, 'ab'), (None, 'cd'), (None, 'efg')])

        self.assertEqual(self.decoded(), [
            (2, 'lengths', 2, 2),
            (2, 'lengths', 3, 1),
        ])
        self.assertEqual(self.counters['lengths'], {'distinct': 2})
        self.assertEqual(self.counters['aggType-2'],
                         {'INPUT_PAIRS': 2, 'INPUT_PAIRS_TOTAL_COUNT': 3})

    def test_init_and_final_on_empty_input(self):
        MRLengthTotals(self.emitter).run_mapper([])

        self.assertEqual(self.pairs, [])
        self.assertEqual(self.counters, {'lengths': {'distinct': 0}})

    def test_mapper_not_redefined(self):
        mapper = MRCounterMapper(self.emitter)

        self.assertRaises(NotImplementedError,
                          mapper.run_mapper, [(None, 'foo')])

    def test_no_input_means_no_mapper_call(self):
        MRCounterMapper(self.emitter).run_mapper([])

        self.assertEqual(self.pairs, [])

    def test_emit_without_emitter(self):
        mapper = MRWordsByLetter()

        self.assertRaises(ValueError, mapper.run_mapper, [(None, 'foo')])

    def test_increment_counter_without_emitter(self):
        mapper = MRCounterMapper()

        self.assertRaises(ValueError, mapper.increment_counter,
                          'page_visits', 'malformed_lines')

    def test_bad_times(self):
        class MRZeroTimes(MRCounterMapper):
            def mapper(self, _, line):
                self.emit(1, 'group', line, 0)

        self.assertRaises(ValueError, MRZeroTimes(self.emitter).run_mapper,
                          [(None, 'foo')])

    def test_input_protocol(self):
        self.assertIsInstance(MRWordsByLetter().input_protocol(),
                              RawValueProtocol)
        self.assertIsInstance(MRJSONInput().input_protocol(),
                              JSONValueProtocol)

    def test_json_input(self):
        protocol = MRJSONInput().input_protocol()
        records = [protocol.read(b'{"user": "u1", "url": "/a"}')]

        MRJSONInput(self.emitter).run_mapper(records)

        self.assertEqual(self.decoded(), [(3, 'u1', '/a', 1)])
