# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Unit Tests for Backend and Configuration Types
"""

import pytest

from sdesym.types.backends import (
    DEFAULT_BACKEND,
    IN_PLACE_BACKENDS,
    VALID_BACKENDS,
    CheckFlags,
    normalize_checks,
    validate_backend,
)


class TestCheckFlags:
    def test_all_contains_components_and_units(self):
        assert CheckFlags.COMPONENTS in CheckFlags.ALL
        assert CheckFlags.UNITS in CheckFlags.ALL
        assert CheckFlags.UNITS not in CheckFlags.COMPONENTS

    @pytest.mark.parametrize(
        "checks, expected",
        [
            (True, CheckFlags.ALL),
            (False, CheckFlags.NONE),
            (None, CheckFlags.NONE),
            (CheckFlags.UNITS, CheckFlags.UNITS),
            (1, CheckFlags.COMPONENTS),
            (3, CheckFlags.ALL),
        ],
    )
    def test_normalize_checks(self, checks, expected):
        assert normalize_checks(checks) == expected


class TestBackends:
    def test_valid_backends(self):
        for backend in VALID_BACKENDS:
            assert validate_backend(backend) == backend

    def test_invalid_backend(self):
        with pytest.raises(ValueError, match="Invalid backend"):
            validate_backend("pytorch")

    def test_jax_is_not_in_place(self):
        assert "jax" not in IN_PLACE_BACKENDS
        assert DEFAULT_BACKEND == "numpy"
