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

""""mrcounter.conf" is the name of both this module, and the global config
file for :py:mod:`mrcounter`.

A config file looks like this::

    runners:
      inline:
        num_reducers: 4
        min_counts:
          1: 2   # only count items seen at least twice in group type 1
    include: ~/shared.mrcounter.conf
"""
import logging
import os
from itertools import chain

import yaml

from mrcounter.util import expand_path

log = logging.getLogger(__name__)

#: Prefix of flat job properties that set a minimum count for a group type,
#: e.g. ``mrcounter.minimum.count.for.group.3: 4``
MINIMUM_COUNT_JOBCONF_PREFIX = 'mrcounter.minimum.count.for.group.'


class ConfigurationError(Exception):
    """Configuration that can't be used; raised before any records are
    read."""
    pass


### READING AND WRITING mrcounter.conf ###

def find_mrcounter_conf():
    """Look for :file:`mrcounter.conf`, and return its path. Places we look:

    - The location specified by :envvar:`MRCOUNTER_CONF`
    - :file:`~/.mrcounter.conf`
    - :file:`/etc/mrcounter.conf`

    Return ``None`` if we can't find it.
    """
    def candidates():
        if 'MRCOUNTER_CONF' in os.environ:
            yield expand_path(os.environ['MRCOUNTER_CONF'])

        # $HOME isn't necessarily set on Windows, but ~ works
        # use os.path.join() so we don't end up mixing \ and /
        yield expand_path(os.path.join('~', '.mrcounter.conf'))

        # this only really makes sense on Unix, so no os.path.join()
        yield '/etc/mrcounter.conf'

    for path in candidates():
        log.debug('looking for configs in %s' % path)
        if os.path.exists(path):
            log.info('using configs in %s' % path)
            return path
    else:
        log.info('no configs found; falling back on auto-configuration')
        return None


def _expanded_conf_path(conf_path=None):
    """Return the path of a single conf file. If *conf_path* is ``False``,
    return ``None``, and if it's ``None``, return
    :py:func:`find_mrcounter_conf`. Otherwise, expand environment variables
    and ``~`` in *conf_path* and return it.
    """
    if conf_path is False:
        return None
    elif conf_path is None:
        return find_mrcounter_conf()
    else:
        return expand_path(conf_path)


def _conf_object_at_path(conf_path):
    if conf_path is None:
        return None

    with open(conf_path) as f:
        return yaml.safe_load(f)


def load_opts_from_mrcounter_conf(runner_alias, conf_path=None,
                                  already_loaded=None):
    """Load a list of dictionaries representing the options in a given
    mrcounter.conf for a specific runner. Returns ``[(path, values)]``. If
    conf_path is not found, return ``[(None, {})]``.

    :type runner_alias: str
    :param runner_alias: String identifier of the runner type, e.g.
                         ``inline``
    :type conf_path: str
    :param conf_path: location of the file to load
    :type already_loaded: list
    :param already_loaded: list of :file:`mrcounter.conf` paths that have
                           already been loaded
    """
    conf_path = _expanded_conf_path(conf_path)
    conf = _conf_object_at_path(conf_path)

    if conf is None:
        return [(None, {})]

    if already_loaded is None:
        already_loaded = []

    already_loaded.append(os.path.realpath(conf_path))

    try:
        values = conf['runners'][runner_alias] or {}
    except (KeyError, TypeError, ValueError):
        log.warning('no configs for runner type %r in %s; ignoring' %
                    (runner_alias, conf_path))
        values = {}

    inherited = []
    if conf.get('include', None):
        includes = conf['include']
        if isinstance(includes, str):
            includes = [includes]

        for include in includes:
            # relative includes are relative to the including file
            include = os.path.join(os.path.dirname(conf_path),
                                   expand_path(include))

            if os.path.realpath(include) in already_loaded:
                log.warning('%s tries to recursively include %s! (Already'
                            ' included:  %s)' % (
                                conf_path, include,
                                ', '.join(already_loaded)))
            else:
                inherited.extend(
                    load_opts_from_mrcounter_conf(
                        runner_alias, include, already_loaded))

    return inherited + [(conf_path, values)]


def load_opts_from_mrcounter_confs(runner_alias, conf_paths=None):
    """Load a list of dictionaries representing the options in a given
    list of mrcounter config files for a specific runner. Returns
    ``[(path, values)]``. If a path is not found, use ``(None, {})`` as its
    value. If *conf_paths* is ``None``, look for a config file in the default
    locations.

    :type runner_alias: str
    :param runner_alias: String identifier of the runner type, e.g.
                         ``inline``
    :type conf_paths: list or ``None``
    :param conf_path: locations of the files to load
    """
    if conf_paths is None:
        return load_opts_from_mrcounter_conf(runner_alias)
    else:
        return list(chain(*[
            load_opts_from_mrcounter_conf(runner_alias, path)
            for path in conf_paths]))


def dump_mrcounter_conf(conf, f):
    """Write out configuration options to a file.

    Useful if you don't want to bother to figure out YAML.

    *conf* should look something like this:

        {'runners':
            'inline': {'OPTION': VALUE, ...}
        }

    :param f: a file object to write to (e.g. ``open('mrcounter.conf', 'w')``)
    """
    yaml.safe_dump(conf, f, default_flow_style=False)
    f.flush()


### COMBINING OPTIONS ###

# combiners generally consider earlier values to be defaults, and later
# options to override or add on to them.

def combine_values(*values):
    """Return the last value in *values* that is not ``None``.

    The default combiner; good for simple values (booleans, strings, numbers).
    """
    for v in reversed(values):
        if v is not None:
            return v
    else:
        return None


def combine_dicts(*dicts):
    """Combine zero or more dictionaries. Values from dicts later in the list
    take precedence over values earlier in the list.

    If you pass in ``None`` in place of a dictionary, it will be ignored.
    """
    result = {}

    for d in dicts:
        if d:
            result.update(d)

    return result


def combine_opts(combiners, *opts_list):
    """The master combiner, used to combine dictionaries of options with
    appropriate sub-combiners.

    :param combiners: a map from option name to a combine_*() function to
                      combine options by that name. By default, we combine
                      options using :py:func:`combine_values`.
    :param opts_list: one or more dictionaries to combine
    """
    final_opts = {}

    keys = set()
    for opts in opts_list:
        if opts:
            keys.update(opts)

    for key in keys:
        values = []
        for opts in opts_list:
            if opts and key in opts:
                values.append(opts[key])

        combine_func = combiners.get(key) or combine_values
        final_opts[key] = combine_func(*values)

    return final_opts


### MINIMUM COUNTS ###

def min_counts_from_jobconf(jobconf):
    """Pull minimum counts out of flat job properties whose names start
    with :py:data:`MINIMUM_COUNT_JOBCONF_PREFIX`.

    Returns a dictionary mapping group type ID (as a string, exactly as it
    appeared in the property name) to threshold.
    """
    min_counts = {}

    for name, value in sorted((jobconf or {}).items()):
        if name.startswith(MINIMUM_COUNT_JOBCONF_PREFIX):
            min_counts[name[len(MINIMUM_COUNT_JOBCONF_PREFIX):]] = value

    return min_counts


def parse_min_counts(min_counts):
    """Validate a map from group type ID to minimum count, and return it
    as a new dictionary from ``int`` to ``int``.

    Group type IDs and counts may be ints or decimal strings (which is what
    we get from job properties). Counts must be positive.

    Raises :py:class:`ConfigurationError` on anything else.
    """
    if min_counts is None:
        return {}

    if not isinstance(min_counts, dict):
        raise ConfigurationError(
            'min_counts must be a dictionary, not %r' % (min_counts,))

    result = {}

    for group_type_id, min_count in min_counts.items():
        group_type_id = _parse_int(group_type_id, 'group type ID')
        min_count = _parse_int(min_count, 'minimum count')

        if min_count < 1:
            raise ConfigurationError(
                'minimum count for group type %d must be positive, not %d' %
                (group_type_id, min_count))

        result[group_type_id] = min_count

    return result


def _parse_int(value, description):
    if isinstance(value, bool):
        raise ConfigurationError('bad %s: %r' % (description, value))

    if isinstance(value, int):
        return value

    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass

    raise ConfigurationError('bad %s: %r' % (description, value))
