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
"""Utility methods for dealing with counters.

Counters are stored as a map from group to counter to amount, e.g.
``{'aggType-1': {'INPUT_PAIRS': 3}}``.
"""

# pairs [group, item, count] passed to emit()
INPUT_PAIRS = 'INPUT_PAIRS'
# sum of counts passed to emit()
INPUT_PAIRS_TOTAL_COUNT = 'INPUT_PAIRS_TOTAL_COUNT'
# groups written to the count-distinct file
OUT_NUM_GROUPS = 'OUT_NUM_GROUPS'
# distinct [group, item] written to the count file
OUT_NUM_ITEMS = 'OUT_NUM_ITEMS'
# sum of counts written to the count file
OUT_TOTAL_ITEMS = 'OUT_TOTAL_ITEMS'
# sum of distinct counts written to the count-distinct file
OUT_TOTAL_DISTINCTS = 'OUT_TOTAL_DISTINCTS'


def counter_group_for(group_type_id):
    """Counter group for statistics about the given group type."""
    return 'aggType-%d' % group_type_id


def increment_counter(counters, group, counter, amount=1):
    """Increment *counter* in *group* of the *counters* dictionary.

    Commas in ``counter`` or ``group`` are replaced with semicolons, the same
    way Hadoop Streaming would see them.
    """
    # don't allow people to pass in floats
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError('amount must be an integer, not %r' % (amount,))

    # cast non-strings to strings (if people pass in exceptions, etc)
    if not isinstance(group, str):
        group = str(group)
    if not isinstance(counter, str):
        counter = str(counter)

    group = group.replace(',', ';')
    counter = counter.replace(',', ';')

    counters.setdefault(group, {})
    counters[group].setdefault(counter, 0)
    counters[group][counter] += amount


def _sum_counters(*counters_list):
    """Combine many maps from group to counter to amount."""
    result = {}

    for counters in counters_list:
        for group, counter_to_amount in counters.items():
            for counter, amount in counter_to_amount.items():
                result.setdefault(group, {})
                result[group].setdefault(counter, 0)
                result[group][counter] += amount

    return result


def _format_counters(counters, indent='\t'):
    """Convert a map from group -> counter name -> amount to a message
    similar to that printed by the Hadoop binary, with no trailing newline.
    """
    num_counters = sum(len(counter_to_amount)
                       for group, counter_to_amount in counters.items())

    message = 'Counters: %d' % num_counters

    for group, group_counters in sorted(counters.items()):
        if group_counters:
            message += '\n%s%s' % (indent, group)
            for counter, amount in sorted(group_counters.items()):
                message += '\n%s%s%s=%d' % (indent, indent, counter, amount)

    return message
