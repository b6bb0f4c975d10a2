from typing import Any, Union

try:
    from erlpack import pack as etf_pack
    from erlpack import unpack as etf_unpack
    ERLPACK_AVAILABLE = True
except ImportError:
    # There is no fallback, we raise an exception later on.
    ERLPACK_AVAILABLE = False

try:
    from ujson import dumps as json_dumps
    from ujson import loads as json_loads
except ImportError:
    from json import dumps as json_dumps
    from json import loads as json_loads


__all__ = ('PayloadCodec', 'ENCODINGS')


ENCODINGS = ('json', 'etf')


def _etf_to_builtins(obj: Any) -> Any:
    """Convert erlpack output to what a JSON payload would have decoded to.

    Strings are sent as Erlang binaries, which erlpack hands back as bytes,
    and map keys may come back as atoms.
    """
    if isinstance(obj, bytes):
        return obj.decode('utf-8')
    if isinstance(obj, dict):
        return {str(k) if not isinstance(k, bytes) else k.decode('utf-8'): _etf_to_builtins(v)
                for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_etf_to_builtins(item) for item in obj]
    return obj


class PayloadCodec:
    """Encoder and decoder for whole gateway payloads.

    The encoding is chosen once and stays fixed for the lifetime of the
    connection: 'json' produces text frames and 'etf' binary frames.
    """

    encoding: str

    __slots__ = ('encoding',)

    def __init__(self, encoding: str = 'json') -> None:
        if encoding not in ENCODINGS:
            raise ValueError(f"Unknown encoding {encoding!r}, expected 'json' or 'etf'")

        if encoding == 'etf' and not ERLPACK_AVAILABLE:
            raise ValueError("ETF encoding not available without 'erlpack' installed")

        self.encoding = encoding

    @property
    def binary(self) -> bool:
        """Whether frames of this encoding are sent as binary frames."""
        return self.encoding == 'etf'

    def dumps(self, payload: Any) -> Union[str, bytes]:
        if self.encoding == 'json':
            return json_dumps(payload)
        else:
            # The encoding is ETF because these are only two cases
            return etf_pack(payload)

    def loads(self, frame: Union[str, bytes]) -> Any:
        if self.encoding == 'json':
            return json_loads(frame)
        else:
            return _etf_to_builtins(etf_unpack(frame))
