from __future__ import annotations

from typing import Optional

from .flash_drum import FlashDrum


class EquilibriumStage(FlashDrum):
    """
    One ideal stage of a column: liquid from above, vapor from below and any
    side feeds are mixed and leave in equilibrium.

    Adiabatic at the lowest inlet pressure unless told otherwise, so a bare
    stage is fully specified.
    """

    def __init__(
        self,
        name: str,
        *,
        T: Optional[float] = None,
        duty: Optional[float] = None,
        P: Optional[float] = None,
        dP: Optional[float] = None,
    ):
        if T is None and duty is None:
            duty = 0.0
        if P is None and dP is None:
            dP = 0.0
        super().__init__(name, T=T, duty=duty, P=P, dP=dP)
