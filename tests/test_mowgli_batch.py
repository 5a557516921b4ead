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

"""Tests for mowgli-batch."""
import pytest

from itep_popgen.mowgli import mowgli_batch
from itep_popgen.mowgli.mowgli_batch import (MowgliConfig, call_mowgli, get_gene_tree_list, make_jobs,
                                             parse_costs, parse_statistics, rooted_name)
from itep_popgen.utils.utility import NA, CommandError

COSTS = "#Donor\tReceiver\tTran\tTranLoss\nn1\tn2\t1\t0\n\t\t0\t0\n\n"
STATISTICS = " dup cost :2\n final Cost :12\n number of Climbs :3\n number of bad NNI :0\n"

FAKE_MOWGLI = """
    while [ $# -gt 0 ]; do
      if [ "$1" = "-o" ]; then out="$2"; fi
      if [ "$1" = "-g" ]; then cp "$2" gene_tree_used.nwk; fi
      shift
    done
    mkdir -p "$out"
    printf '#Donor\\tReceiver\\tTran\\tTranLoss\\nn1\\tn2\\t1\\t0\\n\\n' > "$out/costs.mpr"
    printf ' final Cost :12\\n number of Climbs :3\\n' > "$out/statistics.mpr"
    """


class TestParsers:
    def test_costs(self):
        assert parse_costs(COSTS) == [
            {"Donor": "n1", "Receiver": "n2", "Tran": "1", "TranLoss": "0"},
            {"Donor": NA, "Receiver": NA, "Tran": "0", "TranLoss": "0"},
        ]

    def test_costs_without_table(self):
        assert parse_costs("nothing here\n") == []

    def test_statistics(self):
        assert parse_statistics(STATISTICS) == {"dup_cost": "2", "final_Cost": "12",
                                                "number_of_Climbs": "3", "number_of_bad_NNI": "0"}

    def test_rooted_name(self):
        assert rooted_name("gene.nwk", 3) == "gene_r3.nwk"
        assert rooted_name("gene", 1) == "gene_r1.nwk"


class TestJobs:
    def test_one_job_per_leaf(self, write_file, tmp_path):
        write_file("genes/g1.nwk", "((a,b),(c,d));\n")
        write_file("genes/g2.nwk", "((x,y),z);\n")
        write_file("genes/.hidden", "junk\n")
        files = get_gene_tree_list(tmp_path / "genes")
        assert [f.name for f in files] == ["g1.nwk", "g2.nwk"]
        jobs = make_jobs(files)
        assert len(jobs) == 7
        assert jobs[0] == (str(files[0]), 1, "a")
        assert make_jobs(files, reroot=False) == [(str(files[0]), 1, None), (str(files[1]), 1, None)]

    def test_empty_directory(self, tmp_path):
        with pytest.raises(ValueError, match="No gene trees"):
            get_gene_tree_list(tmp_path)


class TestCallMowgli:
    def test_rows(self, write_file, fake_binary):
        gene = write_file("genes/g1.nwk", "((a,b),(c,d));\n")
        species = write_file("species.nwk", "((A,B)n1,C)n0;\n")
        dr = write_file("dr.txt", "n1\tn2\n")
        config = MowgliConfig(str(species), str(dr), binary=fake_binary("Mowgli", FAKE_MOWGLI))
        rows = call_mowgli((str(gene), 2, "b"), config)
        assert rows == [["g1.nwk", "g1_r2.nwk", str(species), "2", "2", "3", "1", "12", "3", NA, NA,
                         "n1", "n2", "1", "0"]]

    def test_no_output(self, write_file, fake_binary):
        gene = write_file("genes/g1.nwk", "((a,b),c);\n")
        config = MowgliConfig("species.nwk", "dr.txt", binary=fake_binary("Mowgli", "exit 0\n"))
        with pytest.raises(CommandError, match="no output"):
            call_mowgli((str(gene), 1, None), config)


def test_main(write_file, fake_binary, tmp_path, capsys):
    write_file("genes/g1.nwk", "((a,b),c);\n")
    species = write_file("species.nwk", "((A,B)n1,C)n0;\n")
    dr = write_file("dr.txt", "n1\tn2\n")
    mowgli = fake_binary("Mowgli", FAKE_MOWGLI)
    argv = ["-s", str(species), "-g", str(tmp_path / "genes"), "-x", str(dr), "--mowgli-binary", mowgli]
    assert mowgli_batch.main(argv) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split("\t") == mowgli_batch.COLUMNS
    assert [line.split("\t")[1] for line in lines[1:]] == ["g1_r1.nwk", "g1_r2.nwk", "g1_r3.nwk"]
