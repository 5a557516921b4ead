# ITEP_PopGen
# Copyright (C) 2023-2026  The ITEP_PopGen developers
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

import os
import textwrap

import pytest


@pytest.fixture
def fake_binary(tmp_path):
    """Write an executable /bin/sh script standing in for an external tool."""

    def _make(name, body):
        path = tmp_path / "bin" / name
        path.parent.mkdir(exist_ok=True)
        path.write_text("#!/bin/sh\n" + textwrap.dedent(body).lstrip("\n"))
        os.chmod(path, 0o755)
        return str(path)

    return _make


@pytest.fixture
def write_file(tmp_path):
    def _write(name, text):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip("\n"))
        return path

    return _write


RANGER_OUTPUT = """\
------------
Reconciliation for Gene Tree 1 (rooted):
------------
Species Tree: 
((A,B)n1,C)n0;

Gene Tree: 
((a_1,b_2)m1,c_3)m2;

Reconciliation:
a_1: Leaf Node
b_2: Leaf Node
m1 = LCA[a_1, b_2]: Speciation, Mapping --> n1
c_3: Leaf Node
m2 = LCA[a_1, c_3]: Speciation, Mapping --> n0

The minimum reconciliation cost is: 0 (Duplications: 0, Transfers: 0, Losses: 0)

------------
Reconciliation for Gene Tree 2 (rooted):
------------
Species Tree: 
((A,B)n1,C)n0;

Gene Tree: 
((a_1,a_2)m1,b_3)m2;

Reconciliation:
a_1: Leaf Node
a_2: Leaf Node
m1 = LCA[a_1, a_2]: Duplication, Mapping --> n1
b_3: Leaf Node
m2 = LCA[a_1, b_3]: Transfer, Mapping --> n1, Recipient --> C

The minimum reconciliation cost is: 10 (Duplications: 2, Transfers: 1, Losses: 3)
"""


@pytest.fixture
def ranger_output():
    """Ranger-DTL report with two gene trees over the species tree ((A,B)n1,C)n0."""
    return RANGER_OUTPUT


@pytest.fixture
def ranger_file(write_file):
    return write_file("ranger.out", RANGER_OUTPUT)
