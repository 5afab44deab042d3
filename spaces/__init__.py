# spaces/__init__.py
from .base import FiniteSpace, Space
from .discrete import Discrete, Indexed, Singleton
from .interval import Interval
from .nullable import Nullable
from .product import FiniteProduct, Product


def space_from_dict(data: dict) -> Space:
    """Rebuild a space from its to_dict() description."""
    kind = data.get("type")
    if kind == "discrete":
        return Discrete(data["n"])
    if kind == "indexed":
        return Indexed(data["elements"])
    if kind == "singleton":
        return Singleton()
    if kind == "interval":
        return Interval(data["low"], data["high"], rescale=data.get("rescale", False))
    if kind == "nullable":
        return Nullable(space_from_dict(data["inner"]), data.get("none_probability", 0.5))
    if kind == "product":
        return Product([space_from_dict(d) for d in data["spaces"]])
    raise ValueError(f"unknown space type {kind!r}")


__all__ = [
    "Space",
    "FiniteSpace",
    "Discrete",
    "Indexed",
    "Singleton",
    "Interval",
    "Nullable",
    "Product",
    "FiniteProduct",
    "space_from_dict",
]
