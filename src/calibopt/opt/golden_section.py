#########################################################################################
##
##                      ONE-DIMENSIONAL GOLDEN SECTION MINIMISATION
##                              (opt/golden_section.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import math
from typing import Callable

from .exceptions import SolverUsageError


__all__ = ["GoldenSectionSearch", "GOLDEN_SECTION_RATIO"]

GOLDEN_SECTION_RATIO = (3.0 - math.sqrt(5.0)) / 2.0


def golden_section(left: float, right: float) -> float:
    """Point dividing ``[left, right]`` at the golden ratio, nearer to ``right``."""
    return GOLDEN_SECTION_RATIO * left + (1.0 - GOLDEN_SECTION_RATIO) * right


# CLASS =================================================================================

class GoldenSectionSearch:
    """Ask/tell golden section search for a minimum on an interval.

    The search keeps a bracket ``left < middle < right`` with the middle point
    at the golden section and shrinks it by one point per evaluation. It
    assumes the function is unimodal on the interval.

    Use it either by driving the evaluations yourself::

        search = GoldenSectionSearch(-1.0, 5.0)
        while search.accuracy > 1e-11 and not search.is_done:
            x = search.next_point()
            search.set_value((x - 0.656) ** 2)
        search.best_point

    or with :meth:`minimize`, which evaluates a callable in the same loop.

    Parameters
    ----------
    left : float
        Left end of the interval.
    right : float
        Right end of the interval.
    """

    def __init__(self, left: float, right: float):
        left, right = float(left), float(right)
        if not left < right:
            raise ValueError(f"left ({left}) must be smaller than right ({right})")

        self.points = [left, golden_section(left, right), right]
        self.values = [math.nan, math.nan, math.nan]

        self._next_point = left
        self._expecting_value = False

        self.number_of_iterations = 0
        self.accuracy = right - left
        self.is_done = False


    @property
    def best_point(self) -> float:
        """Middle point of the current bracket."""
        return self.points[1]


    def _bisect_larger_interval(self) -> float:
        p = self.points
        if p[1] - p[0] > p[2] - p[1]:
            return golden_section(p[0], p[1])
        return golden_section(p[1], p[2])


    def next_point(self) -> float:
        """Return the next point to evaluate."""
        self._expecting_value = True
        return self._next_point


    def set_value(self, value: float) -> None:
        """Report the function value at the last :meth:`next_point`.

        Raises
        ------
        SolverUsageError
            if no point is pending, e.g. when called twice in a row
        """
        if not self._expecting_value:
            raise SolverUsageError(
                "set_value() called without a prior next_point() call"
            )

        value = float(value)
        p, v = self.points, self.values

        if self.number_of_iterations < 3:
            #initial pass evaluates left, middle and right in turn
            v[self.number_of_iterations] = value
            if self.number_of_iterations < 2:
                self._next_point = p[self.number_of_iterations + 1]
            else:
                self._next_point = self._bisect_larger_interval()
        else:
            new = self._next_point
            if p[1] - p[0] > p[2] - p[1]:
                if value < v[1]:
                    p[2], v[2] = p[1], v[1]
                    p[1], v[1] = new, value
                else:
                    p[0], v[0] = new, value
            else:
                if value < v[1]:
                    p[0], v[0] = p[1], v[1]
                    p[1], v[1] = new, value
                else:
                    p[2], v[2] = new, value

            self._next_point = self._bisect_larger_interval()

            #bracket stopped shrinking at machine precision
            if p[2] - p[0] >= self.accuracy:
                self.is_done = True
            self.accuracy = p[2] - p[0]

        self.number_of_iterations += 1
        self._expecting_value = False


    def minimize(self, function: Callable[[float], float], tolerance: float = 0.0) -> float:
        """Run the search on ``function`` until the bracket is below ``tolerance``.

        Parameters
        ----------
        function : callable
            ``x -> f(x)``.
        tolerance : float
            Width of the bracket at which to stop; ``0`` runs to machine
            precision.

        Returns
        -------
        float
            :attr:`best_point`
        """
        while self.accuracy > tolerance and not self.is_done:
            x = self.next_point()
            self.set_value(function(x))
        return self.best_point


    def __repr__(self) -> str:
        return (
            f"GoldenSectionSearch(best_point={self.best_point:.10g}, "
            f"accuracy={self.accuracy:.3g}, iterations={self.number_of_iterations})"
        )
