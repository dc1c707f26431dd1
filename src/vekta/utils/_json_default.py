from pathlib import PurePath
from typing import Any

import numpy


def _json_default(o: Any):
    if isinstance(o, numpy.ndarray):
        return o.tolist()
    if isinstance(o, numpy.generic):
        return o.item()
    if isinstance(o, PurePath):
        return str(o)
    if isinstance(o, set | frozenset):
        return sorted(o)
    return str(o)
