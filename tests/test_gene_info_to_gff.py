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

"""Tests for itep-geneinfo2gff."""
import io

import pytest

from itep_popgen.itep import gene_info_to_gff
from itep_popgen.itep.gene_info_to_gff import DEFAULT_ATTRIBUTES, parse_attributes

GENE_INFO = "\t".join([
    "fig|83333.1.peg.5", "Escherichia coli K-12", "83333.1", "contig_1_id", "NC_000913",
    "5234", "5530", "+", "297", "hypothetical protein", "peg", "ATG", "MKV", "42",
]) + "\n"


def test_parse_attributes():
    assert parse_attributes(DEFAULT_ATTRIBUTES) == [(13, "note"), (9, "product"), (0, "name")]
    with pytest.raises(ValueError, match="comma delimited pairs"):
        parse_attributes(["note"])


def test_coordinates_and_strand_preserved():
    row = next(gene_info_to_gff.gene_info_to_gff([GENE_INFO], parse_attributes(DEFAULT_ATTRIBUTES)))
    fields = row.split("\t")
    assert fields[:8] == ["NC_000913", "Escherichia_coli_K-12", "CDS", "5234", "5530", ".", "+", "297"]
    assert fields[8] == 'note="42";product="hypothetical protein";name="fig|83333.1.peg.5"'


def test_too_few_columns():
    with pytest.raises(ValueError, match="need >= 9 columns"):
        list(gene_info_to_gff.gene_info_to_gff(["a\tb\tc\n"], []))


def test_missing_attribute_column():
    with pytest.raises(ValueError, match="cannot find specified attribute column 20"):
        list(gene_info_to_gff.gene_info_to_gff([GENE_INFO], [(19, "x")]))


def test_main(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO(GENE_INFO + "\n" + GENE_INFO))
    assert gene_info_to_gff.main(["-a", "3,taxid"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert len(out) == 2
    assert out[0].split("\t")[8] == ('note="42";product="hypothetical protein";'
                                     'name="fig|83333.1.peg.5";taxid="83333.1"')


def test_attribute_relabels_default_column():
    """A pair for a column already in the defaults changes its label in place."""
    atts = parse_attributes(DEFAULT_ATTRIBUTES + ["10,function", "12,start_codon"])
    assert atts == [(13, "note"), (9, "function"), (0, "name"), (11, "start_codon")]
