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
from io import StringIO
from unittest.mock import patch

from mrcounter.examples.mr_page_visits import MRPageVisits
from mrcounter.examples.mr_page_visits import URLS_BY_USER
from mrcounter.examples.mr_page_visits import USERS_BY_URL
from mrcounter.examples.mr_page_visits import main
from mrcounter.inline import InlineCounterRunner

from tests.sandbox import SandboxedTestCase

ACCESS_LOG = (b'alice\t/home\n'
              b'bob\t/home\t3\n'
              b'alice\t/about\n'
              b'garbage\n'
              b'alice\t/home\n')


class MRPageVisitsTestCase(SandboxedTestCase):

    def run_lines(self, lines):
        with InlineCounterRunner() as runner:
            runner.add_input(lines, MRPageVisits)
            runner.run()

            return (sorted(runner.counts()),
                    sorted(runner.distinct_counts()),
                    runner.counters())

    def test_empty(self):
        self.assertEqual(self.run_lines([]), ([], [], {}))

    def test_page_visits(self):
        counts, distinct_counts, counters = self.run_lines(
            ACCESS_LOG.splitlines())

        self.assertEqual(counts, [
            ((URLS_BY_USER, 'alice', '/about'), 1),
            ((URLS_BY_USER, 'alice', '/home'), 2),
            ((URLS_BY_USER, 'bob', '/home'), 3),
            ((USERS_BY_URL, '/about', 'alice'), 1),
            ((USERS_BY_URL, '/home', 'alice'), 2),
            ((USERS_BY_URL, '/home', 'bob'), 3),
        ])

        self.assertEqual(distinct_counts, [
            ((URLS_BY_USER, 'alice'), (3, 2)),
            ((URLS_BY_USER, 'bob'), (3, 1)),
            ((USERS_BY_URL, '/about'), (1, 1)),
            ((USERS_BY_URL, '/home'), (5, 2)),
        ])

        self.assertEqual(counters['page_visits'], {'malformed_lines': 1})

    def test_bad_visit_count(self):
        counts, _, counters = self.run_lines([
            b'alice\t/home\tlots',
            b'alice\t/home\t0',
            b'alice\t/home\t-2',
            b'bob\t/home\t2',
        ])

        self.assertEqual(counts, [
            ((URLS_BY_USER, 'bob', '/home'), 2),
            ((USERS_BY_URL, '/home', 'bob'), 2),
        ])
        self.assertEqual(counters['page_visits'], {'malformed_lines': 3})

    def test_main(self):
        input_path = self.makefile('access_log', ACCESS_LOG)

        stdout = StringIO()
        self.start(patch('sys.stdout', stdout))
        self.start(patch('sys.stderr', StringIO()))

        main([input_path])

        self.assertEqual(stdout.getvalue(),
                         '1\talice\t3\t2\n'
                         '1\tbob\t3\t1\n'
                         '2\t/about\t1\t1\n'
                         '2\t/home\t5\t2\n')
