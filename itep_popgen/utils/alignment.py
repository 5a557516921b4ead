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

"""Minimal aligned-sequence container used by the population tools."""

from typing import Dict, List, Optional

from .utility import read_fasta, taxon_name

GAP_CHARS = set("-.")


class Alignment:
    def __init__(self, name_to_seq: Dict[str, str]):
        self._names = list(name_to_seq)
        self._seqs = [name_to_seq[n] for n in self._names]

    @classmethod
    def from_fasta(cls, path, delimiter: Optional[str] = None, check: bool = True) -> "Alignment":
        """
        Load an aligned FASTA file.

        Args:
            path: FASTA path
            delimiter: if given, sequence names are cut to the text before it
            check: require every sequence to have the same length
        """
        seqs = read_fasta(path, aformat="WORD", duplicate="separate")
        if delimiter:
            renamed = {}
            for name, seq in seqs.items():
                renamed.setdefault(taxon_name(name, delimiter), seq)
            seqs = renamed
        aln = cls(seqs)
        if check and not aln.is_aligned():
            raise ValueError(f"Sequences in {path} are not all the same length. Is it aligned?")
        return aln

    def __len__(self):
        return len(self._seqs)

    @property
    def length(self) -> int:
        return len(self._seqs[0]) if self._seqs else 0

    def names(self) -> List[str]:
        return list(self._names)

    def sequences(self) -> Dict[str, str]:
        return dict(zip(self._names, self._seqs))

    def is_aligned(self) -> bool:
        return len({len(s) for s in self._seqs}) <= 1

    def pairwise_identity(self, i: int, j: int) -> float:
        """
        Percent identity between sequences i and j.

        Columns where both sequences are gaps are ignored; a gap against a base
        counts as a mismatch.
        """
        a, b = self._seqs[i].upper(), self._seqs[j].upper()
        if len(a) != len(b):
            raise ValueError(f"{self._names[i]} and {self._names[j]} differ in length")
        compared = identical = 0
        for x, y in zip(a, b):
            if x in GAP_CHARS and y in GAP_CHARS:
                continue
            compared += 1
            if x == y:
                identical += 1
        return 100.0 * identical / compared if compared else 0.0

    def slice(self, start: int, end: int) -> "Alignment":
        """Columns [start, end) as a new alignment."""
        return Alignment({n: s[start:end] for n, s in zip(self._names, self._seqs)})
