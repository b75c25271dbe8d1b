# influx_datasource/query_parts.py
from typing import Callable, Dict, List

from .errors import QueryParseError, UnsupportedQueryPartError


def _field_renderer(part: "QueryPart", inner_expr: str) -> str:
    if part.params and part.params[0] == "*":
        return "*"
    return f'"{part.params[0]}"'


def _function_renderer(part: "QueryPart", inner_expr: str) -> str:
    params = list(part.params)
    if part.type == "time":
        params = ["$__interval" if p in ("auto", "$interval") else p for p in params]
    if inner_expr:
        params.insert(0, inner_expr)
    return f"{part.type}({', '.join(params)})"


def _suffix_renderer(part: "QueryPart", inner_expr: str) -> str:
    return f"{inner_expr} {part.params[0]}"


def _alias_renderer(part: "QueryPart", inner_expr: str) -> str:
    return f'{inner_expr} AS "{part.params[0]}"'


_FUNCTIONS = [
    "spread", "count", "distinct", "integral", "mean", "median", "sum", "mode",
    "cumulative_sum", "holt_winters", "holt_winters_with_fit", "derivative",
    "non_negative_derivative", "difference", "non_negative_difference",
    "moving_average", "stddev", "time", "fill", "elapsed", "top", "bottom",
    "first", "last", "max", "min", "percentile",
]

RENDERERS: Dict[str, Callable] = {name: _function_renderer for name in _FUNCTIONS}
RENDERERS.update(
    {
        "field": _field_renderer,
        "tag": _field_renderer,
        "math": _suffix_renderer,
        "alias": _alias_renderer,
    }
)


class QueryPart:
    """A single building block of a select or group-by expression."""

    def __init__(self, part_type: str, params: List[str]):
        self.type = part_type
        self.params = params

    @classmethod
    def parse(cls, model) -> "QueryPart":
        if not isinstance(model, dict) or not model.get("type"):
            raise QueryParseError(f"query part is missing a type: {model!r}")
        params = []
        for param in model.get("params") or []:
            if isinstance(param, bool):
                params.append(str(param).lower())
            elif isinstance(param, float) and param.is_integer():
                params.append(str(int(param)))
            else:
                params.append(str(param))
        return cls(model["type"], params)

    def render(self, inner_expr: str = "") -> str:
        renderer = RENDERERS.get(self.type)
        if renderer is None:
            raise UnsupportedQueryPartError(f"missing query definition for {self.type}")
        if renderer is not _function_renderer and not self.params:
            raise QueryParseError(f"query part {self.type} requires a parameter")
        return renderer(self, inner_expr)

    def __repr__(self):
        return f"QueryPart({self.type!r}, {self.params!r})"


def render_parts(parts: List[QueryPart]) -> str:
    expr = ""
    for part in parts:
        expr = part.render(expr)
    return expr
