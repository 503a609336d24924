"""Bus input/output UGens."""

from typing import TYPE_CHECKING

from .. import registry
from ..synthdef import UGen, UGenInLike, param, ugen

if TYPE_CHECKING:
    from ..builder import NodeRequest, UGenGraphBuilder


@ugen(ar=True, kr=True, is_multichannel=True)
class In(UGen):
    bus = param(0.0)


@ugen(ar=True, kr=True, is_multichannel=True)
class LocalIn(UGen):
    default = param(0.0, unexpanded=True)


@registry.register_factory("LocalIn")
def _make_local_in(builder: "UGenGraphBuilder", request: "NodeRequest") -> UGenInLike:
    # one default per channel, cycling the given ones
    defaults = [value for _, value in request.inputs] or [0.0]
    inputs = tuple(
        ("default", defaults[i % len(defaults)]) for i in range(request.channel_count)
    )
    return builder.make_default(request._replace(inputs=inputs))


@ugen(ar=True, kr=True, has_side_effect=True, channel_count=0)
class LocalOut(UGen):
    source = param(unexpanded=True, match_rate=True)


@ugen(ar=True, kr=True, has_side_effect=True, is_individual=True, channel_count=0)
class Out(UGen):
    bus = param(0)
    source = param(unexpanded=True, match_rate=True)


@ugen(ar=True, kr=True, has_side_effect=True, is_individual=True, channel_count=0)
class ReplaceOut(UGen):
    bus = param(0)
    source = param(unexpanded=True, match_rate=True)
