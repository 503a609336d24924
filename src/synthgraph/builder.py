"""
Lowering of declarative synth graphs into ordered primitive UGen lists.

``UGenGraphBuilder`` performs a single depth-first pass over a
``SynthGraph``: every graph element is expanded once, multichannel inputs are
broadcast into parallel node constructions, node rates are resolved and
mismatched inputs are wrapped in rate adapters, and structurally identical
nodes are shared. Nodes are appended in construction order, which is a valid
topological order, so a node only ever reads from nodes placed before it.
"""

import dataclasses
import logging
from collections import Counter
from typing import Any, NamedTuple, Sequence, cast

from . import registry
from .enums import CalculationRate, MaybeRate, ParameterRate, UGenFlag, max_rate
from .synthdef import (
    BroadcastMismatchError,
    ChannelProxy,
    Constant,
    GE,
    GESeq,
    OutputProxy,
    Parameter,
    RateMismatchError,
    SynthDef,
    SynthDefError,
    SynthGraph,
    UGen,
    UGenIn,
    UGenInGroup,
    UGenInLike,
    UGenNode,
    constant_key,
    outputs,
    select_channel,
    unbubble,
    unwrap,
)
from .ugens.lines import A2K, DC, K2A, T2A, T2K

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class BuildOptions:
    """
    Options controlling how a SynthGraph is built.

    ``strict_broadcast`` raises ``BroadcastMismatchError`` when multichannel
    inputs of one UGen have different widths instead of cycling the shorter
    ones. ``optimize`` drops pure nodes whose outputs are never read.
    """

    strict_broadcast: bool = False
    optimize: bool = False


class NodeRequest(NamedTuple):
    """One fully expanded node construction, as handed to factories."""

    ugen_class: type[UGen]
    calculation_rate: MaybeRate
    special_index: int
    channel_count: int
    inputs: tuple[tuple[str, UGenIn], ...]


def _rate_of(value: UGenIn) -> CalculationRate:
    if isinstance(value, OutputProxy):
        return value.node.calculation_rate
    return CalculationRate.SCALAR


class UGenGraphBuilder:
    """Builds one SynthDef from one SynthGraph. Instances are single-use."""

    def __init__(self, graph: SynthGraph, options: BuildOptions | None = None) -> None:
        self._graph = graph
        self._options = options or BuildOptions()
        self._nodes: list[UGenNode] = []
        self._cache: dict[tuple[Any, ...], UGenNode] = {}
        self._visited: dict[int, tuple[GE, UGenInLike]] = {}
        self._control_outputs: dict[Parameter, UGenInLike] = {}
        self._parameters: dict[str, tuple[Parameter, int]] = {}
        self._cache_hits = 0
        self._adapters = 0
        self._built = False

    def add_node(
        self,
        *,
        name: str,
        calculation_rate: CalculationRate,
        inputs: Sequence[UGenIn] = (),
        channel_count: int = 1,
        special_index: int = 0,
        flags: UGenFlag = UGenFlag.NONE,
    ) -> UGenInLike:
        """Append a primitive node, or reuse an identical one.

        Individual nodes are always appended.
        """
        inputs = tuple(inputs)
        key: tuple[Any, ...] | None = None
        if UGenFlag.INDIVIDUAL not in flags:
            input_keys = tuple(
                x if isinstance(x, OutputProxy) else constant_key(x) for x in inputs
            )
            key = (name, calculation_rate, special_index, input_keys, channel_count)
            if (node := self._cache.get(key)) is not None:
                self._cache_hits += 1
                logger.debug("Reusing %r", node)
                return self._node_outputs(node)
        node = UGenNode(
            name=name,
            calculation_rate=calculation_rate,
            inputs=inputs,
            channel_count=channel_count,
            special_index=special_index,
            flags=flags,
        )
        self._nodes.append(node)
        if key is not None:
            self._cache[key] = node
        return self._node_outputs(node)

    def build(self, name: str | None = None) -> SynthDef:
        if self._built:
            raise SynthDefError("UGenGraphBuilder instances build only once")
        self._built = True
        self._build_controls(self._collect_parameters())
        for source in self._graph.sources:
            self.expand(source)
        if self._options.optimize:
            self._optimize()
        logger.debug(
            "Built %s: %d nodes, %d reused, %d rate adapters",
            name or "anonymous SynthDef",
            len(self._nodes),
            self._cache_hits,
            self._adapters,
        )
        return SynthDef(self._nodes, name=name, parameters=self._parameters)

    def construct(self, request: NodeRequest) -> UGenInLike:
        """Dispatch a node construction to its factory, or build it plainly."""
        factory = registry.lookup_factory(request.ugen_class.__name__)
        if factory is not None:
            return factory(self, request)
        return self.make_default(request)

    def expand(self, ge: GE) -> UGenInLike:
        """Lower a graph element to constants and node outputs."""
        if (visited := self._visited.get(id(ge))) is not None:
            return visited[1]
        result: UGenInLike
        if isinstance(ge, Constant):
            result = ge.value
        elif isinstance(ge, Parameter):
            result = self._control_outputs[ge]
        elif isinstance(ge, GESeq):
            result = UGenInGroup(self.expand(x) for x in ge.elements)
        elif isinstance(ge, ChannelProxy):
            result = select_channel(self.expand(ge.source), ge.index)
        elif isinstance(ge, UGen):
            result = self._expand_ugen(ge)
        else:
            raise TypeError(ge)
        # keep ge alive so its id is not reused during the build
        self._visited[id(ge)] = (ge, result)
        return result

    def make_default(self, request: NodeRequest) -> UGenInLike:
        """Resolve rate, adapt inputs and add the node."""
        cls = request.ugen_class
        calculation_rate = request.calculation_rate
        if calculation_rate is None:
            calculation_rate = self._resolve_rate(request)
        inputs = self._match_rates(request, calculation_rate)
        return self.add_node(
            name=registry.lookup_class(cls).name,
            calculation_rate=calculation_rate,
            inputs=inputs,
            channel_count=request.channel_count,
            special_index=request.special_index,
            flags=cls._flags,
        )

    def _broadcast(self, ugen: UGen, args: list[tuple[str, Any]]) -> UGenInLike:
        args = [(key, unbubble(value)) for key, value in args]
        widths = {len(value) for _, value in args if isinstance(value, UGenInGroup)}
        if not widths:
            return self._make(ugen, args)
        if self._options.strict_broadcast and len(widths) > 1:
            raise BroadcastMismatchError(
                f"{ugen!r} received multichannel inputs of widths {sorted(widths)}"
            )
        return UGenInGroup(
            self._broadcast(ugen, [(key, unwrap(value, i)) for key, value in args])
            for i in range(max(widths))
        )

    def _build_controls(self, parameters: list[Parameter]) -> None:
        parameter_mapping: dict[ParameterRate, list[Parameter]] = {}
        for parameter in parameters:
            parameter_mapping.setdefault(parameter.rate, []).append(parameter)
        starting_control_index = 0
        for parameter_rate in sorted(ParameterRate):
            filtered_parameters = sorted(
                parameter_mapping.get(parameter_rate, []), key=lambda x: x.name
            )
            if not filtered_parameters:
                continue
            inputs: list[float] = []
            if parameter_rate == ParameterRate.SCALAR:
                name, calculation_rate = "Control", CalculationRate.SCALAR
            elif parameter_rate == ParameterRate.TRIGGER:
                name, calculation_rate = "TrigControl", CalculationRate.CONTROL
            elif parameter_rate == ParameterRate.AUDIO:
                name, calculation_rate = "AudioControl", CalculationRate.AUDIO
            elif any(parameter.lag for parameter in filtered_parameters):
                name, calculation_rate = "LagControl", CalculationRate.CONTROL
                for parameter in filtered_parameters:
                    inputs.extend([parameter.lag or 0.0] * len(parameter.value))
            else:
                name, calculation_rate = "Control", CalculationRate.CONTROL
            node = UGenNode(
                name=name,
                calculation_rate=calculation_rate,
                inputs=inputs,
                channel_count=sum(len(x.value) for x in filtered_parameters),
                special_index=starting_control_index,
            )
            self._nodes.append(node)
            offset = 0
            for parameter in filtered_parameters:
                outputs_ = node.outputs[offset : offset + len(parameter.value)]
                if len(outputs_) == 1:
                    self._control_outputs[parameter] = outputs_[0]
                else:
                    self._control_outputs[parameter] = UGenInGroup(outputs_)
                self._parameters[parameter.name] = (
                    parameter,
                    starting_control_index + offset,
                )
                offset += len(parameter.value)
            starting_control_index += offset

    def _collect_parameters(self) -> list[Parameter]:
        parameters: dict[str, Parameter] = {}

        def collect(parameter: Parameter) -> None:
            existing = parameters.setdefault(parameter.name, parameter)
            if existing != parameter:
                raise ValueError(
                    f"Parameter {parameter.name!r} is declared twice: {existing!r}, {parameter!r}"
                )

        for parameter in self._graph.parameters:
            collect(parameter)
        stack: list[GE] = list(reversed(self._graph.sources))
        seen: set[int] = set()
        while stack:
            ge = stack.pop()
            if id(ge) in seen:
                continue
            seen.add(id(ge))
            if isinstance(ge, Parameter):
                collect(ge)
            elif isinstance(ge, GESeq):
                stack.extend(reversed(ge.elements))
            elif isinstance(ge, ChannelProxy):
                stack.append(ge.source)
            elif isinstance(ge, UGen):
                stack.extend(reversed(ge.inputs))
        return list(parameters.values())

    def _expand_ugen(self, ugen: UGen) -> UGenInLike:
        args: list[tuple[str, Any]] = []
        for key, input_ in zip(ugen._ordered_keys, ugen.inputs):
            expanded = self.expand(input_)
            if key in ugen._unexpanded_keys:
                args.extend((key, x) for x in outputs(expanded))
            else:
                args.append((key, expanded))
        return self._broadcast(ugen, args)

    def _make(self, ugen: UGen, args: list[tuple[str, Any]]) -> UGenInLike:
        counts = dict.fromkeys(ugen._ordered_keys, 0)
        for key, _ in args:
            counts[key] += 1
        request = NodeRequest(
            ugen_class=type(ugen),
            calculation_rate=ugen.declared_rate,
            special_index=ugen.special_index,
            channel_count=ugen._output_count(counts),
            inputs=tuple(args),
        )
        return self.construct(request)

    def _match_rates(
        self, request: NodeRequest, calculation_rate: CalculationRate
    ) -> list[UGenIn]:
        cls = request.ugen_class
        inputs: list[UGenIn] = []
        for key, value in request.inputs:
            input_rate = _rate_of(value)
            if (
                input_rate == CalculationRate.DEMAND
                and calculation_rate != CalculationRate.DEMAND
                and key not in cls._demand_keys
            ):
                raise RateMismatchError(
                    f"{cls.__name__}.{calculation_rate.token}() cannot read "
                    f"demand-rate {value!r} as {key!r}"
                )
            if key in cls._match_rate_keys and input_rate != calculation_rate:
                value = self._adapt(
                    cls, key, value, input_rate, calculation_rate, key in cls._trigger_keys
                )
            inputs.append(value)
        return inputs

    def _adapt(
        self,
        cls: type[UGen],
        key: str,
        value: UGenIn,
        input_rate: CalculationRate,
        calculation_rate: CalculationRate,
        is_trigger: bool,
    ) -> UGenIn:
        adapter: type[UGen] | None = None
        if CalculationRate.DEMAND in (input_rate, calculation_rate):
            pass
        elif calculation_rate == CalculationRate.AUDIO:
            if input_rate == CalculationRate.SCALAR:
                adapter = DC
            else:
                adapter = T2A if is_trigger else K2A
        elif calculation_rate == CalculationRate.CONTROL:
            if input_rate == CalculationRate.SCALAR:
                return value
            adapter = T2K if is_trigger else A2K
        if adapter is None:
            raise RateMismatchError(
                f"{cls.__name__}.{calculation_rate.token}() cannot read "
                f"{input_rate.name.lower()}-rate {value!r} as {key!r}"
            )
        self._adapters += 1
        logger.debug(
            "Inserting %s.%s() for %s.%s", adapter.__name__, calculation_rate.token, cls.__name__, key
        )
        request = NodeRequest(
            ugen_class=adapter,
            calculation_rate=calculation_rate,
            special_index=0,
            channel_count=1,
            inputs=(("source", value),),
        )
        return cast(UGenIn, self.make_default(request))

    def _node_outputs(self, node: UGenNode) -> UGenInLike:
        if len(node) == 1:
            return node[0]
        return UGenInGroup(node.outputs)

    def _optimize(self) -> None:
        consumers = Counter(
            id(input_.node)
            for node in self._nodes
            for input_ in node.inputs
            if isinstance(input_, OutputProxy)
        )
        removable = UGenFlag.SIDE_EFFECT | UGenFlag.INDIVIDUAL
        kept: list[UGenNode] = []
        for node in reversed(self._nodes):
            if (
                UGenFlag.PURE in node.flags
                and not node.flags & removable
                and not consumers[id(node)]
            ):
                for input_ in node.inputs:
                    if isinstance(input_, OutputProxy):
                        consumers[id(input_.node)] -= 1
                continue
            kept.append(node)
        logger.debug("Optimization removed %d nodes", len(self._nodes) - len(kept))
        self._nodes = kept[::-1]

    def _resolve_rate(self, request: NodeRequest) -> CalculationRate:
        rate_from = request.ugen_class._rate_from
        if rate_from == "max":
            return max_rate(*(_rate_of(value) for _, value in request.inputs))
        for key, value in request.inputs:
            if rate_from is None or key == rate_from:
                return _rate_of(value)
        return CalculationRate.SCALAR


def build_synthdef(
    graph: SynthGraph, name: str | None = None, options: BuildOptions | None = None
) -> SynthDef:
    return UGenGraphBuilder(graph, options).build(name=name)
