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

"""Tests for phi-gene-batch."""
from itep_popgen.popgen import phi_gene_batch
from itep_popgen.popgen.phi_gene_batch import PhiConfig, call_phi, missing_results, parse_phi_output
from itep_popgen.utils.utility import NA

PHI_REPORT = """\
PhiPack
Reading sequence file gene.fasta

     NSS:                 1.00e+00  (1000 permutations)
     Max Chi^2:           4.10e-01  (1000 permutations)
     PHI (Permutation):   5.20e-01  (1000 permutations)
     PHI (Normal):        5.38e-01
"""

FAKE_PHI = """
    echo "Calculating analytical mean and variance"
    echo "PHI (Permutation):   5.20e-01  (1000 permutations)"
    echo "PHI (Normal):        5.38e-01"
    """


class TestParsePhiOutput:
    def test_all_tests(self):
        text = "\n".join(line.strip() for line in PHI_REPORT.splitlines())
        assert parse_phi_output(text) == {
            "NSS": "1.00e+00",
            "Max_Chi^2": "4.10e-01",
            "PHI_(Permutation)": "5.20e-01",
            "PHI_(Normal)": "5.38e-01",
        }

    def test_missing_results(self):
        assert set(missing_results(PhiConfig())) == {"PHI_(Normal)", "PHI_(Permutation)"}
        assert set(missing_results(PhiConfig(permutations=0, all_tests=True))) == \
            {"PHI_(Normal)", "NSS", "Max_Chi^2"}


class TestCallPhi:
    def test_rows_sorted_by_test(self, write_file, fake_binary):
        aln = write_file("gene.fasta", ">a\nACGT\n>b\nACGA\n")
        config = PhiConfig(binary=fake_binary("Phi", FAKE_PHI))
        assert call_phi(str(aln), config) == [
            [str(aln), NA, NA, "PHI_(Normal)", "5.38e-01"],
            [str(aln), NA, NA, "PHI_(Permutation)", "5.20e-01"],
        ]

    def test_no_tests_reported(self, write_file, fake_binary):
        aln = write_file("gene.fasta", ">a\nACGT\n>b\nACGA\n")
        config = PhiConfig(binary=fake_binary("Phi", "echo 'Too few informative sites'\nexit 1\n"))
        rows = call_phi(str(aln), config)
        assert [r[3] for r in rows] == ["PHI_(Normal)", "PHI_(Permutation)"]
        assert all(r[4] == NA for r in rows)


class TestMain:
    def test_fork_count_does_not_change_output(self, write_file, fake_binary, capsys):
        phi = fake_binary("Phi", FAKE_PHI)
        inputs = [str(write_file(f"gene{i}.fasta", ">a\nACGT\n>b\nACGA\n")) for i in (3, 1, 4, 2)]

        assert phi_gene_batch.main(inputs + ["--phi-binary", phi, "-f", "1"]) == 0
        serial = capsys.readouterr().out
        assert phi_gene_batch.main(inputs + ["--phi-binary", phi, "-f", "4"]) == 0
        parallel = capsys.readouterr().out

        assert serial == parallel
        lines = serial.splitlines()
        assert lines[0] == "file\tstart\tend\ttest\tpvalue"
        assert len(lines) == 9
        assert [line.split("\t")[0] for line in lines[1::2]] == sorted(inputs)

    def test_missing_binary(self, write_file, tmp_path, capsys):
        aln = write_file("gene.fasta", ">a\nACGT\n")
        assert phi_gene_batch.main([str(aln), "--phi-binary", str(tmp_path / "Phi")]) == 1
        assert "not found" in capsys.readouterr().err

    def test_missing_input(self, tmp_path, capsys):
        assert phi_gene_batch.main([str(tmp_path / "nope.fasta")]) == 1
        assert "Cannot find alignment" in capsys.readouterr().err
