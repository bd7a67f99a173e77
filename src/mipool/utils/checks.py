from __future__ import annotations

from beartype import BeartypeConf
from beartype import beartype as _beartype

# Integers satisfy `float` hints (`dfcom=20`, `mincor=0`, integer estimates).
beartype = _beartype(conf=BeartypeConf(is_pep484_tower=True))

__all__ = ["beartype"]
