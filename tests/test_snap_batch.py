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

"""Tests for snap-batch."""
import pytest

from itep_popgen.popgen import snap_batch
from itep_popgen.popgen.snap_batch import by_group_rows, calc_dn_ds, parse_snap_summary, summary_rows
from itep_popgen.utils.utility import NA

SNAP_SUMMARY = """\
Compare      Sequence       Sequence      Sd      Sn      S      N      ps      pn      ds      dn      ds/dn      ps/pn
1    2    a1    a2    1.0    2.0    90.0    270.0    0.0111    0.0074    0.0200    0.0100    2.0000    1.5000
1    3    a1    b1    1.0    2.0    90.0    270.0    0.0111    0.0074    0.0400    0.0100    4.0000    1.5000
2    3    a2    b1    1.0    2.0    90.0    270.0    0.0111    0.0074    0.0600    0.0300    2.0000    1.5000
3    4    b1    b2    0.0    0.0    90.0    270.0    0.0000    0.0000    0.0000    0.0000    NA    NA
Averages of all pairwise comparisons:  ds = 0.0300, dn = 0.0125, ds/dn = 2.5000, ps/pn = 1.5000
"""

GROUPS = {"a1": "A", "a2": "A", "b1": "B", "b2": "B"}


class TestParseSNAPSummary:
    def test_averages(self):
        result = parse_snap_summary(SNAP_SUMMARY, "gene.fasta")
        assert (result.ds, result.dn, result.ds_dn) == ("0.0300", "0.0125", "2.5000")
        assert result.by_group == {}

    def test_by_group(self):
        result = parse_snap_summary(SNAP_SUMMARY, "gene.fasta", GROUPS)
        ds, dn, ds_dn, n = result.by_group[("A", "B")]
        assert n == 2
        assert ds == pytest.approx(0.1)
        assert ds_dn == pytest.approx(6.0)
        assert result.by_group[("A", "A")][3] == 1
        # comparisons without ds/dn are skipped
        assert ("B", "B") not in result.by_group

    def test_unknown_sequence(self):
        with pytest.raises(ValueError, match="a2 not found in group file"):
            parse_snap_summary(SNAP_SUMMARY, "gene.fasta", {"a1": "A", "b1": "B", "b2": "B"})


class TestRows:
    def test_calc_dn_ds(self):
        assert calc_dn_ds("2.5") == 0.4
        assert calc_dn_ds("0") == NA
        assert calc_dn_ds(NA) == NA

    def test_summary_rows(self):
        result = parse_snap_summary(SNAP_SUMMARY, "gene.fasta")
        assert summary_rows([result]) == [["gene.fasta", "0.0300", "0.0125", "2.5000", "0.4"]]

    def test_by_group_rows(self):
        result = parse_snap_summary(SNAP_SUMMARY, "gene.fasta", GROUPS)
        rows = by_group_rows([result], GROUPS)
        assert [r[1:3] for r in rows] == [["A", "A"], ["A", "B"], ["B", "B"]]
        assert rows[0] == ["gene.fasta", "A", "A", "0.02", "0.01", "2", "0.5"]
        assert rows[1][3:5] == ["0.05", "0.02"]
        assert rows[2][3:] == [NA] * 4


def test_main(write_file, fake_binary, tmp_path):
    snap = fake_binary("SNAP.pl", f"cat > \"$1.summary\" <<'END'\n{SNAP_SUMMARY}END\n")
    aln = write_file("gene.fasta", ">a1\nATG\n>a2\nATG\n>b1\nATG\n>b2\nATG\n")
    groups = write_file("groups.txt", "\n".join(f"{s}\t{g}" for s, g in GROUPS.items()) + "\n")
    prefix = tmp_path / "snap"
    assert snap_batch.main([str(aln), "-g", str(groups), "-p", str(prefix), "--snap-binary", snap]) == 0
    summary = (tmp_path / "snap_summary.txt").read_text().splitlines()
    assert summary == ["file\tds\tdn\tds_dn\tdn_ds", f"{aln}\t0.0300\t0.0125\t2.5000\t0.4"]
    assert len((tmp_path / "snap_by-group.txt").read_text().splitlines()) == 4
