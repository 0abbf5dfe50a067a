"""Graph construction settings."""

from dataclasses import dataclass

import numpy as np

UNBOUNDED_SIZE = 2**31 - 1
DEFAULT_FLOAT_DTYPE = np.float32


@dataclass(frozen=True)
class GraphConfig:
    """Settings shared by every operation on one Graph.

    Attributes:
        unbounded_size: Sentinel end bound for an unbounded range over an axis
            whose size is unknown.
        record_obligations: Whether undecidable dynamic equalities (from
            realize, reshape, elementwise and concat) are recorded for checking
            at resolution. When False they are dropped.
        float_dtype: Numpy dtype used by the built-in Function payloads.
    """

    unbounded_size: int = UNBOUNDED_SIZE
    record_obligations: bool = True
    float_dtype: type = DEFAULT_FLOAT_DTYPE
