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

"""Test configuration parsing and option combining"""
import os
import os.path
from unittest import TestCase
from unittest.mock import patch

from mrcounter.conf import ConfigurationError
from mrcounter.conf import MINIMUM_COUNT_JOBCONF_PREFIX
from mrcounter.conf import _conf_object_at_path
from mrcounter.conf import _expanded_conf_path
from mrcounter.conf import combine_dicts
from mrcounter.conf import combine_opts
from mrcounter.conf import combine_values
from mrcounter.conf import dump_mrcounter_conf
from mrcounter.conf import find_mrcounter_conf
from mrcounter.conf import load_opts_from_mrcounter_conf
from mrcounter.conf import load_opts_from_mrcounter_confs
from mrcounter.conf import min_counts_from_jobconf
from mrcounter.conf import parse_min_counts
from tests.quiet import logger_disabled
from tests.sandbox import SandboxedTestCase


def load_mrcounter_conf(conf_path=None):
    """Shortcut for automatically loading mrcounter.conf from one of the
    predefined locations and returning the de-YAMLed object
    """
    conf_path = _expanded_conf_path(conf_path)
    return _conf_object_at_path(conf_path)


class MRCounterConfTestCase(SandboxedTestCase):

    MRCOUNTER_CONF_CONTENTS = None

    def setUp(self):
        super(MRCounterConfTestCase, self).setUp()

        self._existing_paths = None
        real_path_exists = os.path.exists

        def os_path_exists_stub(path):
            if self._existing_paths is None:
                return real_path_exists(path)
            else:
                return path in self._existing_paths

        self.start(patch('os.path.exists', side_effect=os_path_exists_stub))

    def write_conf(self, name, conf):
        conf_path = os.path.join(self.tmp_dir, name)
        with open(conf_path, 'w') as f:
            dump_mrcounter_conf(conf, f)
        return conf_path


class FindMRCounterConfTestCase(MRCounterConfTestCase):

    def test_no_mrcounter_conf(self):
        self._existing_paths = []
        self.assertEqual(find_mrcounter_conf(), None)

    def test_etc_mrcounter_conf(self):
        self._existing_paths = ['/etc/mrcounter.conf']
        self.assertEqual(find_mrcounter_conf(), '/etc/mrcounter.conf')

    def test_mrcounter_conf_in_home_dir(self):
        os.environ['HOME'] = self.tmp_dir
        dot_conf_path = os.path.join(self.tmp_dir, '.mrcounter.conf')
        open(dot_conf_path, 'w').close()
        self.assertEqual(find_mrcounter_conf(), dot_conf_path)

    def test_no_dot_in_home_dir(self):
        # ~/mrcounter.conf is not a place we look
        os.environ['HOME'] = self.tmp_dir
        conf_path = os.path.join(self.tmp_dir, 'mrcounter.conf')
        self._existing_paths = [conf_path]
        self.assertEqual(find_mrcounter_conf(), None)

    def test_precedence(self):
        os.environ['HOME'] = '/home/foo'
        self._existing_paths = set()

        self.assertEqual(find_mrcounter_conf(), None)

        self._existing_paths.add('/etc/mrcounter.conf')
        self.assertEqual(find_mrcounter_conf(), '/etc/mrcounter.conf')

        self._existing_paths.add('/home/foo/.mrcounter.conf')
        self.assertEqual(find_mrcounter_conf(), '/home/foo/.mrcounter.conf')

        conf_path = os.path.join(self.tmp_dir, 'mrcounter.conf')
        open(conf_path, 'w').close()
        os.environ['MRCOUNTER_CONF'] = conf_path
        self._existing_paths.add(conf_path)
        self.assertEqual(find_mrcounter_conf(), conf_path)

    def test_conf_path_false_means_no_conf(self):
        self.assertEqual(_expanded_conf_path(False), None)
        self.assertEqual(load_opts_from_mrcounter_conf('inline', False),
                         [(None, {})])


class LoadOptsTestCase(MRCounterConfTestCase):

    def test_load_and_load_opts_use_find_mrcounter_conf(self):
        os.environ['HOME'] = self.tmp_dir

        dot_conf_path = os.path.join(self.tmp_dir, '.mrcounter.conf')
        with open(dot_conf_path, 'w') as f:
            f.write('{"runners": {"inline": {"num_reducers": 3}}}')

        self.assertEqual(load_mrcounter_conf(),
                         {'runners': {'inline': {'num_reducers': 3}}})
        self.assertEqual(load_opts_from_mrcounter_conf('inline')[0][1],
                         {'num_reducers': 3})
        self.assertEqual(load_opts_from_mrcounter_confs('inline')[0][1],
                         {'num_reducers': 3})

    def test_yaml(self):
        conf_path = os.path.join(self.tmp_dir, 'mrcounter.conf')
        with open(conf_path, 'w') as f:
            f.write('runners:\n'
                    '  inline:\n'
                    '    codec: repr\n'
                    '    min_counts:\n'
                    '      1: 2\n')

        self.assertEqual(
            load_opts_from_mrcounter_conf('inline', conf_path),
            [(conf_path, {'codec': 'repr', 'min_counts': {1: 2}})])

    def test_missing_runner(self):
        conf_path = self.write_conf(
            'mrcounter.conf', {'runners': {'inline': {'codec': 'repr'}}})

        with logger_disabled('mrcounter.conf'):
            self.assertEqual(
                load_opts_from_mrcounter_conf('hadoop', conf_path),
                [(conf_path, {})])

    def test_empty_runner(self):
        conf_path = self.write_conf(
            'mrcounter.conf', {'runners': {'inline': None}})

        self.assertEqual(
            load_opts_from_mrcounter_conf('inline', conf_path),
            [(conf_path, {})])

    def test_empty_file(self):
        conf_path = os.path.join(self.tmp_dir, 'mrcounter.conf')
        open(conf_path, 'w').close()

        self.assertEqual(
            load_opts_from_mrcounter_conf('inline', conf_path),
            [(None, {})])

    def test_multiple_conf_paths(self):
        conf_path_1 = self.write_conf(
            'mrcounter.1.conf', {'runners': {'inline': {'codec': 'repr'}}})
        conf_path_2 = self.write_conf(
            'mrcounter.2.conf', {'runners': {'inline': {'combiner': False}}})

        self.assertEqual(
            load_opts_from_mrcounter_confs(
                'inline', [conf_path_1, conf_path_2]),
            [(conf_path_1, {'codec': 'repr'}),
             (conf_path_2, {'combiner': False})])

    def test_recursive_include(self):
        conf_path = os.path.join(self.tmp_dir, 'mrcounter.conf')
        self.write_conf('mrcounter.conf', {'include': conf_path})

        with logger_disabled('mrcounter.conf'):
            self.assertEqual(
                load_opts_from_mrcounter_conf('inline', conf_path),
                [(conf_path, {})])

    def test_doubly_recursive_include(self):
        conf_path_1 = os.path.join(self.tmp_dir, 'mrcounter.1.conf')
        conf_path_2 = os.path.join(self.tmp_dir, 'mrcounter.2.conf')

        self.write_conf('mrcounter.1.conf', {'include': conf_path_2})
        self.write_conf('mrcounter.2.conf', {'include': conf_path_1})

        with logger_disabled('mrcounter.conf'):
            self.assertEqual(
                load_opts_from_mrcounter_conf('inline', conf_path_1),
                [(conf_path_2, {}), (conf_path_1, {})])

    def test_nested_include(self):
        conf_path = os.path.join(self.tmp_dir, 'mrcounter.conf')
        conf_path_1 = os.path.join(self.tmp_dir, 'mrcounter.1.conf')
        conf_path_2 = os.path.join(self.tmp_dir, 'mrcounter.2.conf')
        conf_path_3 = os.path.join(self.tmp_dir, 'mrcounter.3.conf')

        self.write_conf('mrcounter.conf', {'include': conf_path_1})
        self.write_conf('mrcounter.1.conf',
                        {'include': [conf_path_2, conf_path_3]})
        self.write_conf('mrcounter.2.conf', {})
        self.write_conf('mrcounter.3.conf', {})

        with logger_disabled('mrcounter.conf'):
            self.assertEqual(
                load_opts_from_mrcounter_conf('inline', conf_path),
                [(conf_path_2, {}),
                 (conf_path_3, {}),
                 (conf_path_1, {}),
                 (conf_path, {})])

    def test_relative_include(self):
        base_conf_path = self.write_conf(
            'mrcounter.base.conf', {'runners': {'inline': {'codec': 'raw'}}})
        conf_path = self.write_conf(
            'mrcounter.conf', {'include': 'mrcounter.base.conf',
                               'runners': {'inline': {'num_reducers': 2}}})

        self.assertEqual(
            load_opts_from_mrcounter_conf('inline', conf_path),
            [(base_conf_path, {'codec': 'raw'}),
             (conf_path, {'num_reducers': 2})])

    def test_tilde_in_include(self):
        os.environ['HOME'] = self.tmp_dir

        base_conf_path = self.write_conf('mrcounter.base.conf', {})
        conf_path = self.write_conf(
            'mrcounter.conf', {'include': '~/mrcounter.base.conf'})

        with logger_disabled('mrcounter.conf'):
            self.assertEqual(
                load_opts_from_mrcounter_conf('inline', conf_path),
                [(base_conf_path, {}), (conf_path, {})])

    def test_round_trip(self):
        conf = {'runners': {'inline': {'jobconf': {
            MINIMUM_COUNT_JOBCONF_PREFIX + '1': '3'}}}}
        conf_path = self.write_conf('mrcounter.conf', conf)

        self.assertEqual(load_mrcounter_conf(conf_path), conf)


class CombineValuesTestCase(TestCase):

    def test_empty(self):
        self.assertEqual(combine_values(), None)

    def test_picks_last_value(self):
        self.assertEqual(combine_values(1, 2, 3), 3)

    def test_all_None(self):
        self.assertEqual(combine_values(None, None, None), None)

    def test_skips_None(self):
        self.assertEqual(combine_values(None, 'one'), 'one')
        self.assertEqual(combine_values('one', None), 'one')
        self.assertEqual(combine_values(None, None, 'one', None), 'one')

    def test_falseish_values(self):
        # everything but None is a legit value
        self.assertEqual(combine_values(True, False), False)
        self.assertEqual(combine_values(1, 0), 0)
        self.assertEqual(combine_values('full', ''), '')


class CombineDictsTestCase(TestCase):

    def test_empty(self):
        self.assertEqual(combine_dicts(), {})

    def test_later_values_take_precedence(self):
        self.assertEqual(
            combine_dicts({1: 2, 3: 4}, {1: 10}, {5: 6}),
            {1: 10, 3: 4, 5: 6})

    def test_skip_None(self):
        self.assertEqual(combine_dicts(None, {1: 2}, None), {1: 2})

    def test_dont_modify_arguments(self):
        a = {1: 2}
        combine_dicts(a, {3: 4})
        self.assertEqual(a, {1: 2})


class CombineOptsTestCase(TestCase):

    def test_empty(self):
        self.assertEqual(combine_opts(combiners={}), {})

    def test_combine_opts(self):
        combiners = {'min_counts': combine_dicts}

        self.assertEqual(
            combine_opts(combiners,
                         {'codec': 'json', 'min_counts': {1: 2}},
                         None,
                         {'codec': 'repr', 'min_counts': {2: 3}},
                         {'codec': None, 'num_reducers': 4}),
            {'codec': 'repr', 'min_counts': {1: 2, 2: 3}, 'num_reducers': 4})


class MinCountsFromJobconfTestCase(TestCase):

    def test_empty(self):
        self.assertEqual(min_counts_from_jobconf(None), {})
        self.assertEqual(min_counts_from_jobconf({}), {})

    def test_picks_out_prefix(self):
        self.assertEqual(
            min_counts_from_jobconf({
                MINIMUM_COUNT_JOBCONF_PREFIX + '1': '4',
                MINIMUM_COUNT_JOBCONF_PREFIX + '22': 3,
                'mapreduce.job.reduces': '3',
            }),
            {'1': '4', '22': 3})

    def test_prefix(self):
        self.assertEqual(MINIMUM_COUNT_JOBCONF_PREFIX,
                         'mrcounter.minimum.count.for.group.')


class ParseMinCountsTestCase(TestCase):

    def test_none(self):
        self.assertEqual(parse_min_counts(None), {})

    def test_ints(self):
        self.assertEqual(parse_min_counts({1: 2, -3: 4}), {1: 2, -3: 4})

    def test_strings(self):
        self.assertEqual(parse_min_counts({'1': '2', '-3': 4}),
                         {1: 2, -3: 4})

    def test_not_a_dict(self):
        self.assertRaises(ConfigurationError, parse_min_counts, [(1, 2)])
        self.assertRaises(ConfigurationError, parse_min_counts, '1=2')

    def test_bad_group_type_id(self):
        self.assertRaises(ConfigurationError, parse_min_counts, {'one': 2})
        self.assertRaises(ConfigurationError, parse_min_counts, {None: 2})
        self.assertRaises(ConfigurationError, parse_min_counts, {True: 2})

    def test_bad_min_count(self):
        for bad in ('two', '2.5', 2.5, None, True, [2]):
            self.assertRaises(ConfigurationError,
                              parse_min_counts, {1: bad})

    def test_min_count_must_be_positive(self):
        self.assertRaises(ConfigurationError, parse_min_counts, {1: 0})
        self.assertRaises(ConfigurationError, parse_min_counts, {1: '-1'})
