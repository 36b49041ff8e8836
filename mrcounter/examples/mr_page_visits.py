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
"""Count page visits from access log lines like
``<user>\\t<url>[\\t<num_visits>]``.

Two kinds of groups are counted in the same job:

- :py:data:`URLS_BY_USER`: for each user, visits to each URL, and how many
  different URLs they visited
- :py:data:`USERS_BY_URL`: for each URL, visits by each user, and how many
  different users visited it

Usage::

    python -m mrcounter.examples.mr_page_visits access_log [access_log ...]
"""
import sys

from mrcounter.inline import InlineCounterRunner
from mrcounter.job import MRCounterMapper
from mrcounter.util import log_to_stream

URLS_BY_USER = 1
USERS_BY_URL = 2


class MRPageVisits(MRCounterMapper):

    def mapper(self, _, line):
        fields = line.decode('utf_8').split('\t')
        if len(fields) < 2:
            self.increment_counter('page_visits', 'malformed_lines')
            return

        user, url = fields[0], fields[1]

        times = 1
        if len(fields) > 2:
            try:
                times = int(fields[2])
            except ValueError:
                times = 0

            if times < 1:
                self.increment_counter('page_visits', 'malformed_lines')
                return

        self.emit(URLS_BY_USER, user, url, times)
        self.emit(USERS_BY_URL, url, user, times)


def main(args=None):
    if args is None:
        args = sys.argv[1:]

    log_to_stream('mrcounter')

    with InlineCounterRunner() as runner:
        for path in args:
            runner.add_input(path, MRPageVisits)

        runner.run()

        for (group_type_id, group), (total, distinct) in sorted(
                runner.distinct_counts()):
            print('%d\t%s\t%d\t%d' % (group_type_id, group, total, distinct))


if __name__ == '__main__':
    main()
