"""
Graph elements, catalog declarations and SynthDefs for synthgraph.

A synth graph is declared as a tree of immutable graph elements (GEs):
constants, named parameters, UGen specifications, channel selections and
explicit multichannel sequences. Nothing is computed when a GE is created;
``SynthGraph.build()`` hands the tree to ``synthgraph.builder`` which expands
it into a flat, rate-resolved list of ``UGenNode`` objects wrapped in a
``SynthDef``.
"""

import contextlib
import enum
import hashlib
import operator
import struct
import threading
from collections.abc import Mapping, Sequence as SequenceABC
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Iterable,
    Iterator,
    NamedTuple,
    SupportsFloat,
    Union,
    cast,
)

from . import registry
from .enums import (
    BinaryOperator,
    CalculationRate,
    MaybeRate,
    ParameterRate,
    UGenFlag,
    UnaryOperator,
    max_rate,
)

if TYPE_CHECKING:
    from .builder import BuildOptions, NodeRequest, UGenGraphBuilder


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SynthDefError(Exception):
    pass


class ChannelIndexError(SynthDefError, IndexError):
    """A channel selection points past the outputs of its source."""


class RateMismatchError(SynthDefError):
    """An input's rate cannot be converted to the rate its consumer needs."""


class BroadcastMismatchError(SynthDefError):
    """Multichannel inputs of different widths met under strict broadcasting."""


class SerializationError(SynthDefError):
    pass


class ArityError(SerializationError):
    pass


class UnknownTypeError(SerializationError):
    pass


# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

GEInput = Union[SupportsFloat, "GE", "UGenSerializable", SequenceABC["GEInput"]]
ChannelCount = Union[int, Callable[[Mapping[str, int]], int]]


# ---------------------------------------------------------------------------
# Expanded signals
# ---------------------------------------------------------------------------


class OutputProxy:
    """A reference to one output of a built UGenNode."""

    __slots__ = ("node", "index")

    def __init__(self, node: "UGenNode", index: int) -> None:
        self.node = node
        self.index = index

    def __eq__(self, expr: object) -> bool:
        return (
            isinstance(expr, OutputProxy)
            and self.node is expr.node
            and self.index == expr.index
        )

    def __hash__(self) -> int:
        return hash((OutputProxy, id(self.node), self.index))

    def __repr__(self) -> str:
        return repr(self.node).replace(">", f"[{self.index}]>")

    @property
    def calculation_rate(self) -> CalculationRate:
        return self.node.calculation_rate


UGenIn = Union[float, OutputProxy]


class UGenInGroup(SequenceABC[Any]):
    """An ordered group of expanded signals: the multichannel case."""

    __slots__ = ("_values",)

    def __init__(self, values: Iterable[Any] = ()) -> None:
        self._values = tuple(values)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, UGenInGroup) and self._values == other._values

    def __hash__(self) -> int:
        return hash((UGenInGroup, self._values))

    def __getitem__(self, i: Any) -> Any:
        return self._values[i]

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"UGenInGroup({', '.join(repr(x) for x in self._values)})"


UGenInLike = Union[UGenIn, UGenInGroup]


def unbubble(value: Any) -> Any:
    """Collapse single-element groups down to their element."""
    while isinstance(value, UGenInGroup) and len(value) == 1:
        value = value[0]
    return value


def unwrap(value: Any, index: int) -> Any:
    """Select replica ``index`` of an expansion, cycling shorter groups."""
    if isinstance(value, UGenInGroup):
        if not len(value):
            return value
        return unbubble(value[index % len(value)])
    return value


def outputs(value: Any) -> tuple[Any, ...]:
    """The top-level outputs of an expansion."""
    if isinstance(value, UGenInGroup):
        return tuple(value)
    return (value,)


def flat_outputs(value: Any) -> tuple[Any, ...]:
    """All atoms of an expansion, depth-first."""
    if isinstance(value, UGenInGroup):
        return tuple(x for item in value for x in flat_outputs(item))
    return (value,)


# ---------------------------------------------------------------------------
# @ugen / @param decorator support
# ---------------------------------------------------------------------------


class Missing:
    """Sentinel for required parameters (no default)."""

    def __repr__(self) -> str:
        return "Missing()"


MISSING = Missing()


class Param(NamedTuple):
    default: "Missing | float | None" = MISSING
    unexpanded: bool = False
    match_rate: bool = False
    trigger: bool = False
    accepts_demand: bool = False


def _format_value(value: object) -> str:
    if value == float("inf"):
        value_repr = 'float("inf")'
    elif value == float("-inf"):
        value_repr = 'float("-inf")'
    elif isinstance(value, Missing):
        value_repr = "MISSING"
    elif isinstance(value, enum.Enum):
        value_repr = f"{type(value).__name__}.{value.name}"
    else:
        value_repr = repr(value)
    return value_repr


def _get_fn_globals() -> dict[str, Any]:
    return {
        "CalculationRate": CalculationRate,
        "GE": GE,
        "GEInput": GEInput,
        "MISSING": MISSING,
        "MaybeRate": MaybeRate,
        "UGen": UGen,
        "Union": Union,
    }


def _create_fn(
    *,
    cls: type["UGen"],
    name: str,
    args: list[str],
    body: list[str],
    return_type: Any,
    globals_: dict[str, Any] | None = None,
    decorator: Callable[..., Any] | None = None,
    override: bool = False,
) -> None:
    if name in cls.__dict__ and not override:
        return
    globals_ = globals_ or {}
    locals_ = {"_return_type": return_type}
    args_ = ",\n        ".join(args)
    body_ = "\n".join(f"        {line}" for line in body)
    text = f"    def {name}(\n        {args_}\n    ) -> _return_type:\n{body_}"
    local_vars = ", ".join(locals_.keys())
    text = f"def __create_fn__({local_vars}):\n{text}\n    return {name}"
    namespace: dict[str, Callable[..., Any]] = {}
    exec(text, globals_, namespace)
    value = namespace["__create_fn__"](**locals_)
    value.__qualname__ = f"{cls.__qualname__}.{value.__name__}"
    if decorator:
        value = decorator(value)
    setattr(cls, name, value)


def _add_init(
    cls: type["UGen"],
    params: dict[str, Param],
    is_multichannel: bool,
    channel_count: int,
) -> None:
    args = [
        "self",
        "*",
        "calculation_rate: MaybeRate = None",
        "special_index: int = 0",
    ]
    body = ["UGen.__init__(", "    self,"]
    body.append("    calculation_rate=calculation_rate,")
    body.append("    special_index=special_index,")
    for key, param_ in params.items():
        prefix = f"{key}: GEInput"
        if isinstance(param_.default, Missing):
            args.append(prefix)
        else:
            args.append(f"{prefix} = {_format_value(param_.default)}")
        body.append(f"    {key}={key},")
    if is_multichannel:
        args.append(f"channel_count: int = {channel_count}")
        body.append("    channel_count=channel_count,")
    body.append(")")
    _create_fn(
        cls=cls,
        name="__init__",
        args=args,
        body=body,
        globals_=_get_fn_globals(),
        return_type=None,
    )


def _add_param_fn(cls: type["UGen"], name: str, index: int) -> None:
    _create_fn(
        cls=cls,
        name=name,
        args=["self"],
        body=[f"return self._inputs[{index}]"],
        decorator=property,
        globals_=_get_fn_globals(),
        override=True,
        return_type=GE,
    )


def _add_rate_fn(
    cls: type["UGen"],
    rate: CalculationRate | None,
    params: dict[str, Param],
    is_multichannel: bool,
    channel_count: int,
) -> None:
    args = ["cls"]
    if params or is_multichannel:
        args.append("*")
    for key, param_ in params.items():
        prefix = f"{key}: GEInput"
        if isinstance(param_.default, Missing):
            args.append(prefix)
        else:
            args.append(f"{prefix} = {_format_value(param_.default)}")
    body = ["return cls("]
    if rate is None:
        body.append("    calculation_rate=None,")
    else:
        body.append(f"    calculation_rate=CalculationRate.{rate.name},")
    if is_multichannel:
        args.append(f"channel_count: int = {channel_count}")
        body.append("    channel_count=channel_count,")
    body.extend(f"    {name}={name}," for name in params)
    body.append(")")
    _create_fn(
        cls=cls,
        name=rate.token if rate is not None else "new",
        args=args,
        body=body,
        decorator=classmethod,
        globals_=_get_fn_globals(),
        return_type=GE,
    )


def _process_class(
    cls: type["UGen"],
    *,
    ar: bool = False,
    kr: bool = False,
    ir: bool = False,
    dr: bool = False,
    new: bool = False,
    has_done_flag: bool = False,
    has_side_effect: bool = False,
    is_individual: bool = False,
    is_multichannel: bool = False,
    is_pure: bool = False,
    channel_count: ChannelCount = 1,
    rate_from: str | None = None,
) -> type["UGen"]:
    params: dict[str, Param] = {}
    for name, value in cls.__dict__.items():
        if not isinstance(value, Param):
            continue
        params[name] = value
        _add_param_fn(cls, name, len(params) - 1)
    count_fn = channel_count if callable(channel_count) else None
    fixed_count = 1 if count_fn else cast(int, channel_count)
    _add_init(cls, params, is_multichannel, fixed_count)
    valid_calculation_rates = []
    for should_add, rate in [
        (ar, CalculationRate.AUDIO),
        (kr, CalculationRate.CONTROL),
        (ir, CalculationRate.SCALAR),
        (dr, CalculationRate.DEMAND),
        (new, None),
    ]:
        if not should_add:
            continue
        _add_rate_fn(cls, rate, params, is_multichannel, fixed_count)
        if rate is not None:
            valid_calculation_rates.append(rate)
    flags = UGenFlag.NONE
    for enabled, flag in [
        (has_done_flag, UGenFlag.DONE_FLAG),
        (has_side_effect, UGenFlag.SIDE_EFFECT),
        (is_individual, UGenFlag.INDIVIDUAL),
        (is_pure, UGenFlag.PURE),
    ]:
        if enabled:
            flags |= flag
    cls._flags = flags
    cls._channel_count = fixed_count
    cls._channel_count_fn = staticmethod(count_fn) if count_fn else None  # type: ignore[assignment]
    cls._is_multichannel = bool(is_multichannel)
    cls._rate_from = rate_from
    cls._ordered_keys = tuple(params)
    cls._unexpanded_keys = frozenset(k for k, v in params.items() if v.unexpanded)
    cls._match_rate_keys = frozenset(k for k, v in params.items() if v.match_rate)
    cls._trigger_keys = frozenset(k for k, v in params.items() if v.trigger)
    cls._demand_keys = frozenset(k for k, v in params.items() if v.accepts_demand)
    cls._valid_calculation_rates = tuple(valid_calculation_rates)
    # rate, special index, one field per param, channel count if variable
    registry.register_type(
        cls, arity=2 + len(params) + (1 if is_multichannel else 0)
    )
    return cls


def param(
    default: Missing | float | None = MISSING,
    *,
    unexpanded: bool = False,
    match_rate: bool = False,
    trigger: bool = False,
    accepts_demand: bool = False,
) -> Param:
    """Define a UGen parameter. Akin to dataclasses.field.

    ``unexpanded`` parameters take a whole multichannel signal as consecutive
    inputs instead of triggering multichannel expansion. ``match_rate`` (and
    ``trigger``, for trigger signals) parameters are converted to the UGen's
    rate when it is built. ``accepts_demand`` parameters may be fed by
    demand-rate UGens.
    """
    return Param(default, unexpanded, match_rate or trigger, trigger, accepts_demand)


def ugen(
    *,
    ar: bool = False,
    kr: bool = False,
    ir: bool = False,
    dr: bool = False,
    new: bool = False,
    has_done_flag: bool = False,
    has_side_effect: bool = False,
    is_individual: bool = False,
    is_multichannel: bool = False,
    is_pure: bool = False,
    channel_count: ChannelCount = 1,
    rate_from: str | None = None,
) -> Callable[[type["UGen"]], type["UGen"]]:
    """Decorate a UGen class. Akin to dataclasses.dataclass.

    ``channel_count`` is either a fixed output count or a function receiving
    the number of inputs fed to each parameter. ``rate_from`` names the input
    whose rate a ``.new()`` UGen inherits (``"max"`` for the highest input
    rate); by default the first input decides.
    """

    def wrap(cls: type[UGen]) -> type[UGen]:
        return _process_class(
            cls,
            ar=ar,
            kr=kr,
            ir=ir,
            dr=dr,
            new=new,
            has_done_flag=has_done_flag,
            has_side_effect=has_side_effect,
            is_individual=is_individual,
            is_multichannel=is_multichannel,
            is_pure=is_pure,
            channel_count=channel_count,
            rate_from=rate_from,
        )

    if is_multichannel and callable(channel_count):
        raise ValueError("A multichannel UGen takes its channel count as argument")
    return wrap


# ---------------------------------------------------------------------------
# Graph elements
# ---------------------------------------------------------------------------


class UGenSerializable:
    """Something that flattens into a list of UGen inputs, like an Envelope."""

    def serialize(self, **kwargs: Any) -> SequenceABC[Any]:
        raise NotImplementedError


def as_ge(value: Any) -> "GE":
    """Coerce numbers, sequences and serializables to graph elements."""
    if isinstance(value, GE):
        return value
    if isinstance(value, UGenSerializable):
        return as_ge(value.serialize())
    if isinstance(value, str):
        raise ValueError(value)
    if isinstance(value, SupportsFloat):
        return Constant(value)
    if isinstance(value, SequenceABC):
        return GESeq(*value)
    raise ValueError(value)


def _is_constant(value: Any) -> bool:
    if isinstance(value, GE):
        return isinstance(value, Constant)
    return isinstance(value, SupportsFloat) and not isinstance(value, str)


def constant_key(value: float) -> bytes:
    """Key a constant by its bit pattern, so -0.0 and 0.0 stay distinct."""
    return struct.pack(">d", value)


def _compute_binary_op(
    left: GEInput,
    right: GEInput,
    special_index: BinaryOperator,
    float_operator: Callable[..., Any] | None = None,
) -> "GE":
    if float_operator is not None and _is_constant(left) and _is_constant(right):
        return Constant(float_operator(float(left), float(right)))  # type: ignore[arg-type]
    return BinaryOpUGen(
        calculation_rate=None, special_index=special_index, left=left, right=right
    )


def _compute_unary_op(
    source: GEInput,
    special_index: UnaryOperator,
    float_operator: Callable[..., Any] | None = None,
) -> "GE":
    if float_operator is not None and _is_constant(source):
        return Constant(float_operator(float(source)))  # type: ignore[arg-type]
    return UnaryOpUGen(calculation_rate=None, special_index=special_index, source=source)


class GE:
    """Base class of all graph elements.

    Graph elements are immutable descriptions of one or more signal
    channels. They support arithmetic, which builds operator UGens, and
    channel selection by index.
    """

    __slots__ = ()

    def __abs__(self) -> "GE":
        return _compute_unary_op(self, UnaryOperator.ABSOLUTE_VALUE, operator.abs)

    def __add__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(self, expr, BinaryOperator.ADDITION, operator.add)

    def __radd__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(expr, self, BinaryOperator.ADDITION, operator.add)

    def __sub__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(self, expr, BinaryOperator.SUBTRACTION, operator.sub)

    def __rsub__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(expr, self, BinaryOperator.SUBTRACTION, operator.sub)

    def __mul__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(
            self, expr, BinaryOperator.MULTIPLICATION, operator.mul
        )

    def __rmul__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(
            expr, self, BinaryOperator.MULTIPLICATION, operator.mul
        )

    def __truediv__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(
            self, expr, BinaryOperator.FLOAT_DIVISION, operator.truediv
        )

    def __rtruediv__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(
            expr, self, BinaryOperator.FLOAT_DIVISION, operator.truediv
        )

    def __mod__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(self, expr, BinaryOperator.MODULO, operator.mod)

    def __pow__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(self, expr, BinaryOperator.POWER, operator.pow)

    def __rpow__(self, expr: GEInput) -> "GE":
        return _compute_binary_op(expr, self, BinaryOperator.POWER, operator.pow)

    def __neg__(self) -> "GE":
        return _compute_unary_op(self, UnaryOperator.NEGATIVE, operator.neg)

    def __getitem__(self, i: int | slice) -> "GE":
        count = len(self)
        if isinstance(i, slice):
            return GESeq(*(self[j] for j in range(*i.indices(count))))
        index = i + count if i < 0 else i
        if not 0 <= index < count:
            raise ChannelIndexError(f"{self!r} has no channel {i}")
        if count == 1 and not isinstance(self._shape(), UGenInGroup):
            return self
        return ChannelProxy(self, index)

    def __iter__(self) -> Iterator["GE"]:
        for i in range(len(self)):
            yield self[i]

    def __len__(self) -> int:
        return len(outputs(self._shape()))

    def _shape(self) -> UGenInLike:
        """The expansion this element will produce, with ``None`` atoms."""
        raise NotImplementedError

    def clip2(self, expr: GEInput) -> "GE":
        return _compute_binary_op(self, expr, BinaryOperator.CLIP2)

    def dbamp(self) -> "GE":
        return _compute_unary_op(self, UnaryOperator.DBAMP, lambda x: 10 ** (x / 20))

    def madd(self, multiplier: GEInput = 1.0, addend: GEInput = 0.0) -> "GE":
        """Multiply then add, as a single MulAdd where the rates allow it."""
        from .ugens.basic import MulAdd

        return MulAdd.new(  # type: ignore[attr-defined,no-any-return]
            source=self, multiplier=multiplier, addend=addend
        )

    def max(self, expr: GEInput) -> "GE":
        return _compute_binary_op(self, expr, BinaryOperator.MAXIMUM, max)

    def midicps(self) -> "GE":
        return _compute_unary_op(
            self, UnaryOperator.MIDICPS, lambda x: 440.0 * 2 ** ((x - 69) / 12)
        )

    def min(self, expr: GEInput) -> "GE":
        return _compute_binary_op(self, expr, BinaryOperator.MINIMUM, min)

    def squared(self) -> "GE":
        return _compute_unary_op(self, UnaryOperator.SQUARED, lambda x: x * x)

    def tanh(self) -> "GE":
        return _compute_unary_op(self, UnaryOperator.TANH)

    @property
    def calculation_rate(self) -> CalculationRate:
        raise NotImplementedError


class Constant(GE):
    """A literal number."""

    __slots__ = ("_value",)

    def __init__(self, value: SupportsFloat) -> None:
        self._value = float(value)

    def __eq__(self, expr: object) -> bool:
        if isinstance(expr, GE):
            return isinstance(expr, Constant) and expr._value == self._value
        if isinstance(expr, SupportsFloat) and not isinstance(expr, str):
            return float(expr) == self._value
        return False

    def __float__(self) -> float:
        return self._value

    def __hash__(self) -> int:
        return hash(self._value)

    def __repr__(self) -> str:
        return f"<{self._value}>"

    def _shape(self) -> UGenInLike:
        return None  # type: ignore[return-value]

    @property
    def calculation_rate(self) -> CalculationRate:
        return CalculationRate.SCALAR

    @property
    def value(self) -> float:
        return self._value


class GESeq(GE):
    """An explicit multichannel signal, one channel per element."""

    __slots__ = ("_elements", "_hash")

    def __init__(self, *elements: GEInput) -> None:
        self._elements = tuple(as_ge(x) for x in elements)
        self._hash: int | None = None

    def __eq__(self, expr: object) -> bool:
        return isinstance(expr, GESeq) and self._elements == expr._elements

    def __getitem__(self, i: int | slice) -> GE:
        if isinstance(i, slice):
            return GESeq(*self._elements[i])
        try:
            return self._elements[i]
        except IndexError:
            raise ChannelIndexError(f"{self!r} has no channel {i}") from None

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash((GESeq, self._elements))
        return self._hash

    def __len__(self) -> int:
        return len(self._elements)

    def __repr__(self) -> str:
        return f"<GESeq([{', '.join(repr(x) for x in self._elements)}])>"

    def _shape(self) -> UGenInLike:
        return UGenInGroup(x._shape() for x in self._elements)

    @property
    def calculation_rate(self) -> CalculationRate:
        return max_rate(*(x.calculation_rate for x in self._elements))

    @property
    def elements(self) -> tuple[GE, ...]:
        return self._elements


class ChannelProxy(GE):
    """Selects one output channel of a multi-output graph element."""

    __slots__ = ("_source", "_index")

    def __init__(self, source: GE, index: int) -> None:
        self._source = source
        self._index = int(index)

    def __eq__(self, expr: object) -> bool:
        return (
            isinstance(expr, ChannelProxy)
            and self._index == expr._index
            and self._source == expr._source
        )

    def __hash__(self) -> int:
        return hash((ChannelProxy, self._source, self._index))

    def __repr__(self) -> str:
        return f"{self._source!r}[{self._index}]"

    def _shape(self) -> UGenInLike:
        return select_channel(self._source._shape(), self._index)

    @property
    def calculation_rate(self) -> CalculationRate:
        return self._source.calculation_rate

    @property
    def index(self) -> int:
        return self._index

    @property
    def source(self) -> GE:
        return self._source


def select_channel(expanded: UGenInLike, index: int) -> UGenInLike:
    outputs_ = outputs(expanded)
    if not 0 <= index < len(outputs_):
        raise ChannelIndexError(
            f"Channel {index} selected from {len(outputs_)} output(s)"
        )
    return outputs_[index]


# ---------------------------------------------------------------------------
# UGen specifications
# ---------------------------------------------------------------------------


# Thread-local storage for active builders
_local = threading.local()


def _active_builder() -> "SynthDefBuilder | None":
    builders = getattr(_local, "_active_builders", None)
    if builders:
        return cast("SynthDefBuilder", builders[-1])
    return None


@contextlib.contextmanager
def detached_from_builders() -> Iterator[None]:
    """Create graph elements without adding them to an enclosing builder."""
    builders = getattr(_local, "_active_builders", [])
    _local._active_builders = []
    try:
        yield
    finally:
        _local._active_builders = builders


class UGen(GE):
    """Base class for all catalog unit generators.

    An instance describes one UGen of the catalog with its declared rate
    (``None`` when the rate is inferred from the inputs) and one graph
    element per parameter. Subclasses are declared with ``@ugen`` and
    ``param()`` and gain ``ar``/``kr``/``ir``/``dr``/``new`` constructors.
    """

    __slots__ = (
        "_calculation_rate",
        "_special_index",
        "_inputs",
        "_instance_channel_count",
        "_hash",
        "_shape_cache",
    )

    _channel_count: int = 1
    _channel_count_fn: Callable[[Mapping[str, int]], int] | None = None
    _flags = UGenFlag.NONE
    _is_multichannel = False
    _rate_from: str | None = None
    _ordered_keys: tuple[str, ...] = ()
    _unexpanded_keys: frozenset[str] = frozenset()
    _match_rate_keys: frozenset[str] = frozenset()
    _trigger_keys: frozenset[str] = frozenset()
    _demand_keys: frozenset[str] = frozenset()
    _valid_calculation_rates: tuple[CalculationRate, ...] = ()

    def __init__(
        self,
        *,
        calculation_rate: MaybeRate = None,
        special_index: int = 0,
        channel_count: int | None = None,
        **kwargs: GEInput,
    ) -> None:
        if calculation_rate is not None:
            calculation_rate = CalculationRate.from_expr(calculation_rate)
            if (
                self._valid_calculation_rates
                and calculation_rate not in self._valid_calculation_rates
            ):
                raise ValueError(
                    f"{type(self).__name__} does not run at {calculation_rate.name}"
                )
        self._calculation_rate: MaybeRate = calculation_rate
        self._special_index = int(special_index)
        if channel_count is not None and not self._is_multichannel:
            raise ValueError(f"{type(self).__name__} has a fixed channel count")
        if channel_count is not None and channel_count < 0:
            raise ValueError(channel_count)
        self._instance_channel_count = channel_count
        inputs = []
        for key in self._ordered_keys:
            value = kwargs.pop(key, MISSING)
            if isinstance(value, Missing):
                raise ValueError(f"{type(self).__name__} requires {key!r}")
            inputs.append(as_ge(value))
        if kwargs:
            raise ValueError(type(self).__name__, kwargs)
        self._inputs: tuple[GE, ...] = tuple(inputs)
        self._hash: int | None = None
        self._shape_cache: Any = MISSING
        if (builder := _active_builder()) is not None:
            builder._add_ugen(self)

    def __eq__(self, expr: object) -> bool:
        if self is expr:
            return True
        if type(expr) is not type(self):
            return False
        other = cast(UGen, expr)
        return (
            self._calculation_rate,
            self._special_index,
            self._instance_channel_count,
            self._inputs,
        ) == (
            other._calculation_rate,
            other._special_index,
            other._instance_channel_count,
            other._inputs,
        )

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(
                (
                    type(self),
                    self._calculation_rate,
                    self._special_index,
                    self._instance_channel_count,
                    self._inputs,
                )
            )
        return self._hash

    def __repr__(self) -> str:
        token = self._calculation_rate.token if self._calculation_rate is not None else "new"
        return f"<{self.name}.{token}()>"

    def _output_count(self, input_counts: Mapping[str, int]) -> int:
        if self._instance_channel_count is not None:
            return self._instance_channel_count
        if self._channel_count_fn is not None:
            return self._channel_count_fn(input_counts)
        return self._channel_count

    def _shape(self) -> UGenInLike:
        if isinstance(self._shape_cache, Missing):
            args: list[Any] = []
            counts: dict[str, int] = {}
            for key, input_ in zip(self._ordered_keys, self._inputs):
                shape = input_._shape()
                if key in self._unexpanded_keys:
                    outputs_ = outputs(shape)
                    args.extend(outputs_)
                    counts[key] = len(outputs_)
                else:
                    args.append(shape)
                    counts[key] = 1
            self._shape_cache = _broadcast_shape(args, self._output_count(counts))
        return cast(UGenInLike, self._shape_cache)

    @property
    def calculation_rate(self) -> CalculationRate:
        """The declared rate, or the rate inferred from the inputs."""
        if self._calculation_rate is not None:
            return self._calculation_rate
        if not self._inputs:
            return CalculationRate.SCALAR
        if self._rate_from == "max":
            return max_rate(*(x.calculation_rate for x in self._inputs))
        if self._rate_from is not None:
            return self._inputs[self._ordered_keys.index(self._rate_from)].calculation_rate
        return self._inputs[0].calculation_rate

    @property
    def declared_rate(self) -> MaybeRate:
        return self._calculation_rate

    @property
    def flags(self) -> UGenFlag:
        return self._flags

    @property
    def has_done_flag(self) -> bool:
        return UGenFlag.DONE_FLAG in self._flags

    @property
    def inputs(self) -> tuple[GE, ...]:
        return self._inputs

    @property
    def is_individual(self) -> bool:
        return UGenFlag.INDIVIDUAL in self._flags

    @property
    def has_side_effect(self) -> bool:
        return UGenFlag.SIDE_EFFECT in self._flags

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def special_index(self) -> int:
        return self._special_index

    @property
    def channel_count(self) -> int | None:
        return self._instance_channel_count


def _broadcast_shape(args: list[Any], channel_count: int) -> Any:
    width = 0
    for arg in args:
        arg = unbubble(arg)
        if isinstance(arg, UGenInGroup):
            width = max(width, len(arg))
    if not any(isinstance(unbubble(arg), UGenInGroup) for arg in args):
        if channel_count == 1:
            return None
        return UGenInGroup([None] * channel_count)
    return UGenInGroup(
        _broadcast_shape([unwrap(unbubble(arg), i) for arg in args], channel_count)
        for i in range(width)
    )


class PseudoUGen:
    """A catalog entry which rewrites itself into other graph elements."""

    @classmethod
    def new(cls, *args: Any, **kwargs: Any) -> GE:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Operator UGens
# ---------------------------------------------------------------------------


@ugen(new=True, is_pure=True, rate_from="max")
class UnaryOpUGen(UGen):
    source = param()

    def __repr__(self) -> str:
        return f"<UnaryOpUGen.new({self.operator.name})>"

    @property
    def operator(self) -> UnaryOperator:
        return UnaryOperator(self.special_index)


@ugen(new=True, is_pure=True, rate_from="max")
class BinaryOpUGen(UGen):
    left = param()
    right = param()

    def __repr__(self) -> str:
        return f"<BinaryOpUGen.new({self.operator.name})>"

    @property
    def operator(self) -> BinaryOperator:
        return BinaryOperator(self.special_index)


_FLOAT_BINARY_OPERATORS: dict[int, Callable[[float, float], float]] = {
    BinaryOperator.ADDITION: operator.add,
    BinaryOperator.SUBTRACTION: operator.sub,
    BinaryOperator.MULTIPLICATION: operator.mul,
    BinaryOperator.MINIMUM: min,
    BinaryOperator.MAXIMUM: max,
}

_FLOAT_UNARY_OPERATORS: dict[int, Callable[[float], float]] = {
    UnaryOperator.NEGATIVE: operator.neg,
    UnaryOperator.ABSOLUTE_VALUE: abs,
    UnaryOperator.SQUARED: lambda x: x * x,
}


@registry.register_factory("UnaryOpUGen")
def _make_unary_op(builder: "UGenGraphBuilder", request: "NodeRequest") -> UGenInLike:
    (_, source), = request.inputs
    float_operator = _FLOAT_UNARY_OPERATORS.get(request.special_index)
    if isinstance(source, float) and float_operator is not None:
        return float(float_operator(source))
    return builder.make_default(request)


@registry.register_factory("BinaryOpUGen")
def _make_binary_op(builder: "UGenGraphBuilder", request: "NodeRequest") -> UGenInLike:
    (_, left), (_, right) = request.inputs
    special_index = request.special_index
    float_operator = _FLOAT_BINARY_OPERATORS.get(special_index)
    if isinstance(left, float) and isinstance(right, float) and float_operator:
        return float(float_operator(left, right))

    def negate(value: UGenIn) -> UGenInLike:
        return builder.construct(
            request._replace(
                ugen_class=UnaryOpUGen,
                special_index=UnaryOperator.NEGATIVE,
                inputs=(("source", value),),
            )
        )

    if special_index == BinaryOperator.MULTIPLICATION:
        if left == 0.0 or right == 0.0:
            return 0.0
        if left == 1.0:
            return right
        if left == -1.0:
            return negate(right)
        if right == 1.0:
            return left
        if right == -1.0:
            return negate(left)
    elif special_index == BinaryOperator.ADDITION:
        if left == 0.0:
            return right
        if right == 0.0:
            return left
    elif special_index == BinaryOperator.SUBTRACTION:
        if left == 0.0:
            return negate(right)
        if right == 0.0:
            return left
    elif special_index == BinaryOperator.FLOAT_DIVISION:
        if right == 1.0:
            return left
        if right == -1.0:
            return negate(left)
    return builder.make_default(request)


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


class Parameter(GE):
    """A named control input of a SynthDef, with one output per value."""

    __slots__ = ("_name", "_value", "_rate", "_lag")

    def __init__(
        self,
        *,
        name: str,
        value: float | SequenceABC[float],
        rate: ParameterRate | str | None = ParameterRate.CONTROL,
        lag: float | None = None,
    ) -> None:
        if not name:
            raise ValueError("Parameters need a name")
        self._name = name
        if isinstance(value, SupportsFloat):
            self._value: tuple[float, ...] = (float(value),)
        else:
            self._value = tuple(float(x) for x in value)
        if not self._value:
            raise ValueError(f"Parameter {name!r} has no value")
        self._rate = ParameterRate.from_expr(rate)
        self._lag = None if lag is None else float(lag)
        if (builder := _active_builder()) is not None:
            builder._add_parameter(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Parameter):
            return False
        return (self._name, self._value, self._rate, self._lag) == (
            other._name,
            other._value,
            other._rate,
            other._lag,
        )

    def __hash__(self) -> int:
        return hash((Parameter, self._name, self._value, self._rate, self._lag))

    def __repr__(self) -> str:
        return f"<Parameter.{self.calculation_rate.token}({self._name})>"

    def _shape(self) -> UGenInLike:
        if len(self._value) == 1:
            return None  # type: ignore[return-value]
        return UGenInGroup([None] * len(self._value))

    @property
    def calculation_rate(self) -> CalculationRate:
        return CalculationRate.from_expr(self._rate)

    @property
    def lag(self) -> float | None:
        return self._lag

    @property
    def name(self) -> str:
        return self._name

    @property
    def rate(self) -> ParameterRate:
        return self._rate

    @property
    def value(self) -> tuple[float, ...]:
        return self._value


def control(
    name: str,
    value: float | SequenceABC[float] = 0.0,
    rate: ParameterRate | str | None = ParameterRate.CONTROL,
    lag: float | None = None,
) -> Parameter:
    """Declare a named control inline, inside an active SynthDefBuilder."""
    return Parameter(name=name, value=value, rate=rate, lag=lag)


# ---------------------------------------------------------------------------
# Built graphs
# ---------------------------------------------------------------------------


class UGenNode:
    """A primitive UGen of an assembled graph.

    Inputs are constants or ``OutputProxy`` references to nodes built
    earlier. Nodes compare by identity; ``SynthDef`` equality compares their
    structure.
    """

    __slots__ = (
        "name",
        "calculation_rate",
        "inputs",
        "special_index",
        "flags",
        "_outputs",
    )

    def __init__(
        self,
        *,
        name: str,
        calculation_rate: CalculationRate,
        inputs: SequenceABC[UGenIn] = (),
        channel_count: int = 1,
        special_index: int = 0,
        flags: UGenFlag = UGenFlag.NONE,
    ) -> None:
        self.name = name
        self.calculation_rate = CalculationRate.from_expr(calculation_rate)
        self.inputs: tuple[UGenIn, ...] = tuple(
            x if isinstance(x, OutputProxy) else float(x) for x in inputs
        )
        self.special_index = int(special_index)
        self.flags = flags
        self._outputs = tuple(OutputProxy(self, i) for i in range(channel_count))

    def __getitem__(self, i: int) -> OutputProxy:
        return self._outputs[i]

    def __iter__(self) -> Iterator[OutputProxy]:
        yield from self._outputs

    def __len__(self) -> int:
        return len(self._outputs)

    def __repr__(self) -> str:
        return f"<{self.name}.{self.calculation_rate.token}()>"

    @property
    def channel_count(self) -> int:
        return len(self._outputs)

    @property
    def has_done_flag(self) -> bool:
        return UGenFlag.DONE_FLAG in self.flags

    @property
    def has_side_effect(self) -> bool:
        return UGenFlag.SIDE_EFFECT in self.flags

    @property
    def is_individual(self) -> bool:
        return UGenFlag.INDIVIDUAL in self.flags

    @property
    def outputs(self) -> tuple[OutputProxy, ...]:
        return self._outputs


CONTROL_UGEN_NAMES = frozenset(["Control", "AudioControl", "LagControl", "TrigControl"])


class SynthDef:
    """An assembled graph: an ordered list of UGenNodes plus its controls."""

    def __init__(
        self,
        ugens: SequenceABC[UGenNode],
        name: str | None = None,
        parameters: Mapping[str, tuple[Parameter, int]] | None = None,
    ) -> None:
        if not ugens:
            raise SynthDefError("No UGens provided")
        self._ugens = tuple(ugens)
        self._name = name
        self._indices: dict[int, int] = {}
        constants: dict[bytes, float] = {}
        for i, ugen_ in enumerate(self._ugens):
            for input_ in ugen_.inputs:
                if isinstance(input_, OutputProxy):
                    if self._indices.get(id(input_.node), i) >= i:
                        raise SynthDefError(
                            f"{ugen_!r} reads from {input_.node!r} which is not placed before it"
                        )
                else:
                    constants.setdefault(constant_key(input_), input_)
            self._indices[id(ugen_)] = i
        self._constants = tuple(constants.values())
        self._constant_indices = {key: i for i, key in enumerate(constants)}
        self._controls = tuple(x for x in self._ugens if x.name in CONTROL_UGEN_NAMES)
        self._parameters = dict(
            sorted((parameters or {}).items(), key=lambda x: (x[1][1], x[0]))
        )
        from .compiler import _compile_ugen_graph

        self._compiled_graph = _compile_ugen_graph(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return False
        return (self._name, self._describe()) == (other._name, other._describe())

    def __hash__(self) -> int:
        return hash((type(self), self._name, self._compiled_graph))

    def __repr__(self) -> str:
        return f"<SynthDef: {self.effective_name}>"

    def _describe(self) -> tuple[Any, ...]:
        """A structural fingerprint, independent of node identity."""
        return (
            tuple(
                (
                    x.name,
                    x.calculation_rate,
                    x.special_index,
                    len(x),
                    x.flags,
                    tuple(
                        (self.ugen_index(y.node), y.index)
                        if isinstance(y, OutputProxy)
                        else constant_key(y)
                        for y in x.inputs
                    ),
                )
                for x in self._ugens
            ),
            tuple(self._parameters.items()),
        )

    def compile(self, use_anonymous_name: bool = False) -> bytes:
        from .compiler import compile_synthdefs

        return compile_synthdefs(self, use_anonymous_names=use_anonymous_name)

    def constant_index(self, value: float) -> int:
        try:
            return self._constant_indices[constant_key(value)]
        except KeyError:
            raise SynthDefError(f"{value!r} is not a constant of {self!r}") from None

    def ugen_index(self, node: UGenNode) -> int:
        try:
            return self._indices[id(node)]
        except KeyError:
            raise SynthDefError(f"{node!r} is not part of {self!r}") from None

    @property
    def anonymous_name(self) -> str:
        return hashlib.md5(self._compiled_graph).hexdigest()

    @property
    def constants(self) -> SequenceABC[float]:
        return self._constants

    @property
    def controls(self) -> SequenceABC[UGenNode]:
        return self._controls

    @property
    def effective_name(self) -> str:
        return self.name or self.anonymous_name

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def parameters(self) -> dict[str, tuple[Parameter, int]]:
        return dict(self._parameters)

    @property
    def ugens(self) -> SequenceABC[UGenNode]:
        return self._ugens


class SynthGraph:
    """The declarative form of a SynthDef: its source elements and parameters.

    ``sources`` are the UGen specifications in the order they were declared;
    expanding them in that order is what fixes the order of side effects.
    """

    def __init__(
        self, sources: Iterable[GE] = (), parameters: Iterable[Parameter] = ()
    ) -> None:
        self._sources = tuple(sources)
        self._parameters = tuple(parameters)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SynthGraph):
            return False
        return (self._sources, self._parameters) == (other._sources, other._parameters)

    def __hash__(self) -> int:
        return hash((SynthGraph, self._sources, self._parameters))

    def __repr__(self) -> str:
        return f"<SynthGraph: {len(self._sources)} sources, {len(self._parameters)} parameters>"

    def build(
        self, name: str | None = None, options: "BuildOptions | None" = None
    ) -> SynthDef:
        from .builder import UGenGraphBuilder

        return UGenGraphBuilder(self, options).build(name=name)

    @property
    def parameters(self) -> tuple[Parameter, ...]:
        return self._parameters

    @property
    def sources(self) -> tuple[GE, ...]:
        return self._sources


# ---------------------------------------------------------------------------
# SynthDefBuilder
# ---------------------------------------------------------------------------


class SynthDefBuilder:
    """Collects graph elements declared inside its ``with`` block.

    ::

        with SynthDefBuilder(frequency=440) as builder:
            Out.ar(bus=0, source=SinOsc.ar(frequency=builder["frequency"]))
        synthdef = builder.build(name="sine")
    """

    def __init__(self, **kwargs: Parameter | SequenceABC[float] | float) -> None:
        self._parameters: dict[str, Parameter] = {}
        self._sources: list[GE] = []
        for key, value in kwargs.items():
            if isinstance(value, Parameter):
                self.add_parameter(
                    lag=value.lag, name=key, value=value.value, rate=value.rate
                )
            else:
                self.add_parameter(name=key, value=value)

    def __enter__(self) -> "SynthDefBuilder":
        if not hasattr(_local, "_active_builders"):
            _local._active_builders = []
        _local._active_builders.append(self)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: Any,
    ) -> None:
        _local._active_builders.pop()

    def __getitem__(self, item: str) -> Parameter:
        return self._parameters[item]

    def _add_parameter(self, parameter: Parameter) -> None:
        existing = self._parameters.get(parameter.name)
        if existing is not None and existing != parameter:
            raise ValueError(f"Parameter {parameter.name!r} is already declared")
        self._parameters[parameter.name] = parameter

    def _add_ugen(self, ugen_: UGen) -> None:
        self._sources.append(ugen_)

    def add_parameter(
        self,
        *,
        name: str,
        value: float | SequenceABC[float],
        rate: ParameterRate | str | None = ParameterRate.CONTROL,
        lag: float | None = None,
    ) -> Parameter:
        if name in self._parameters:
            raise ValueError(name, value)
        parameter = Parameter(lag=lag, name=name, rate=rate, value=value)
        self._parameters[name] = parameter
        return parameter

    def build(
        self,
        name: str | None = None,
        optimize: bool = False,
        strict_broadcast: bool = False,
    ) -> SynthDef:
        from .builder import BuildOptions

        options = BuildOptions(optimize=optimize, strict_broadcast=strict_broadcast)
        return self.graph.build(name=name, options=options)

    @property
    def graph(self) -> SynthGraph:
        return SynthGraph(self._sources, self._parameters.values())


# ---------------------------------------------------------------------------
# @synthdef decorator
# ---------------------------------------------------------------------------


def synthdef(*args: str | tuple[str, float]) -> Callable[..., SynthDef]:
    """Decorator for constructing SynthDefs from functions.

    Parameter rates and lags can be specified positionally::

        @synthdef("ar", ("kr", 0.5))
        def my_synth(freq=440, amp=0.1):
            ...
    """
    import inspect

    def inner(func: Callable[..., Any]) -> SynthDef:
        signature = inspect.signature(func)
        builder = SynthDefBuilder()
        kwargs: dict[str, Parameter] = {}
        for i, (name, parameter) in enumerate(signature.parameters.items()):
            rate = ParameterRate.CONTROL
            lag = None
            try:
                arg_i = args[i]
                if isinstance(arg_i, str):
                    rate = ParameterRate.from_expr(arg_i)
                else:
                    rate_expr, lag = arg_i
                    rate = ParameterRate.from_expr(rate_expr)
            except (IndexError, TypeError):
                pass
            value = parameter.default
            if value is inspect.Parameter.empty:
                value = 0.0
            kwargs[name] = builder.add_parameter(
                name=name, lag=lag, rate=rate, value=value
            )
        with builder:
            func(**kwargs)
        return builder.build(name=func.__name__)

    return inner
