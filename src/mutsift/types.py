"""
Helper classes for type hints
"""

from typing import List, Tuple

SequenceDictionary = List[Tuple[str, int]]
CigarTuples = List[Tuple[int, int]]
AlleleKey = Tuple[str, int, str, str]
