#!/usr/bin/env python3
"""
User-authored functions: force laws and closed-form position functions.

A ForceFunction evaluates a scalar from a state vector. It is built either from
a Python callable or from an expression string over named variables, e.g.
ForceFunction("fx", "-k*x", variables=("x", "vx", "y", "vy", "t"), parameters={"k": 2}).
The stepper treats these as opaque: whatever they return (including NaN or inf)
flows into the trajectory unchanged. An expression that cannot be evaluated
(division by zero, an undefined name, a misused value) returns NaN.
"""
import logging
import math
from typing import Callable, Dict, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

CARTESIAN_VARS = ("x", "vx", "y", "vy", "t")
POLAR_VARS = ("r", "vr", "theta", "omega", "t")
TIME_VARS = ("t",)

_MATH_NAMES: Dict[str, object] = {
    name: getattr(math, name) for name in dir(math) if not name.startswith("_")
}
_MATH_NAMES.update({"abs": abs, "min": min, "max": max})


class ForceFunction:
    """
    Named scalar function of a state vector.

    Args:
        name: Function name (e.g. "fx", "fr", "x")
        expression: Expression string or callable. A callable receives the state
            values as positional arguments in the order of `variables`.
        variables: Names bound to state[0], state[1], ... when evaluating
        parameters: Extra named constants available to expressions
    """

    def __init__(self, name: str, expression="0", variables: Sequence[str] = CARTESIAN_VARS,
                 parameters: Optional[Mapping[str, float]] = None):
        self.name = name
        self.variables = tuple(variables)
        self.parameters: Dict[str, float] = dict(parameters or {})
        self._callable: Optional[Callable] = None
        self._code = None
        self.expression: Optional[str] = None
        self.set_expression(expression)

    def set_expression(self, expression) -> None:
        if callable(expression):
            self._callable = expression
            self._code = None
            self.expression = None
        else:
            self.expression = str(expression).strip() or "0"
            self._code = compile(self.expression, f"<{self.name}>", "eval")
            self._callable = None
        self._bad_expression_logged = False

    @property
    def is_expression(self) -> bool:
        return self._code is not None

    def evaluate(self, state: Sequence[float]) -> float:
        if self._callable is not None:
            return float(self._callable(*state[:len(self.variables)]))
        namespace = dict(_MATH_NAMES)
        namespace.update(self.parameters)
        namespace.update(zip(self.variables, state))
        try:
            return float(eval(self._code, {"__builtins__": {}}, namespace))
        except (ZeroDivisionError, OverflowError, ValueError):
            return math.nan
        except (NameError, TypeError) as exc:
            # unknown parameter or misused name; reported once per expression
            if not self._bad_expression_logged:
                self._bad_expression_logged = True
                logger.warning("%s = %r cannot be evaluated: %s", self.name, self.expression, exc)
            return math.nan

    def __call__(self, *state: float) -> float:
        return self.evaluate(state)

    def __repr__(self) -> str:
        return f"ForceFunction({self.name!r}, {self.expression or self._callable!r})"
