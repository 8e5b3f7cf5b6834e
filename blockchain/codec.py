"""Decoding of calldata and event logs against a possibly incomplete ABI.

Nothing in this module raises on bad input. Decoding produces a tagged
result (``Decoded`` or ``Fallback``), and the public functions turn a
fallback into the placeholder records the rest of the service expects.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from eth_abi import decode as abi_decode
from eth_utils import decode_hex, to_checksum_address

from blockchain.abi import AbiParameter, ContractAbi
from blockchain.schemas import DecodedFunctionCall, DecodedLogEntry

logger = logging.getLogger("contract_explainer").getChild("codec")

DEPLOYMENT_FUNCTION_NAME = "Deployment"
UNKNOWN_EVENT_NAME = "Unknown Event"

# Largest integer a JSON consumer using IEEE doubles can hold exactly
MAX_SAFE_INTEGER = 2**53 - 1
_BIG_INT_PATTERN = re.compile(r"^-?\d+n$")
# strings that look like encoded integers carry one extra "n"
_ESCAPED_PATTERN = re.compile(r"^-?\d+n+$")


@dataclass(frozen=True)
class Decoded:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Fallback:
    reason: str


DecodeResult = Decoded | Fallback


def serialize_value(value: Any) -> Any:
    """
    Make a decoded value JSON-safe without losing integer precision.

    Integers beyond ``MAX_SAFE_INTEGER`` become ``"<digits>n"`` strings,
    bytes become 0x-prefixed hex and sequences become lists. Strings of the
    form ``"<digits>n..."`` get one more ``n`` so they never read as integers.

    Parameters
    ----------
    value : Any
        Decoded value

    Returns
    -------
    Any
        Serialized value
    """
    if isinstance(value, str):
        return value + "n" if _ESCAPED_PATTERN.match(value) else value
    if value is None or isinstance(value, (bool, float)):
        return value
    if isinstance(value, int):
        return f"{value}n" if abs(value) > MAX_SAFE_INTEGER else value
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    return str(value)


def deserialize_value(value: Any) -> Any:
    """
    Inverse of ``serialize_value`` for integers and escaped strings.

    Parameters
    ----------
    value : Any
        Serialized value

    Returns
    -------
    Any
        Value with every ``"<digits>n"`` string turned back into an int
    """
    if isinstance(value, str):
        if _BIG_INT_PATTERN.match(value):
            return int(value[:-1])
        if _ESCAPED_PATTERN.match(value):
            return value[:-1]
        return value
    if isinstance(value, list):
        return [deserialize_value(v) for v in value]
    if isinstance(value, dict):
        return {k: deserialize_value(v) for k, v in value.items()}
    return value


def _format_value(param: AbiParameter, value: Any) -> Any:
    if param.type.endswith("]"):
        inner = param.model_copy(update={"type": param.type[:param.type.rindex("[")]})
        return [_format_value(inner, v) for v in value]
    if param.type == "tuple":
        components = param.components or []
        return {
            c.name or str(i): _format_value(c, v)
            for i, (c, v) in enumerate(zip(components, value))
        }
    if param.type == "address":
        return to_checksum_address(value)
    return value


def _named_args(params: Sequence[AbiParameter], values: Sequence[Any]) -> dict[str, Any]:
    return {
        param.name or str(index): serialize_value(_format_value(param, value))
        for index, (param, value) in enumerate(zip(params, values, strict=True))
    }


def try_decode_function(abi: ContractAbi, tx_input: str) -> DecodeResult:
    try:
        calldata = decode_hex(tx_input)
    except (TypeError, ValueError) as e:
        return Fallback(f"calldata is not hex: {e}")

    if len(calldata) < 4:
        return Fallback("calldata shorter than a selector")

    selector = "0x" + calldata[:4].hex()
    function = abi.functions.get(selector)
    if function is None:
        return Fallback(f"selector {selector} not in ABI")

    try:
        values = abi_decode([p.canonical_type for p in function.inputs], calldata[4:])
        return Decoded(function.name, _named_args(function.inputs, values))
    except Exception as e:  # eth_abi raises several unrelated error types
        return Fallback(f"cannot decode {function.signature}: {e}")


def try_decode_log(abi: ContractAbi, topics: Sequence[str], data: str) -> DecodeResult:
    if not topics:
        return Fallback("log has no topics")

    event = abi.events.get(topics[0].lower())
    if event is None:
        return Fallback(f"topic {topics[0]} not in ABI")

    indexed = [p for p in event.inputs if p.indexed]
    if len(topics) - 1 != len(indexed):
        return Fallback(
            f"{event.signature} expects {len(indexed)} indexed topics, got {len(topics) - 1}"
        )

    try:
        topic_values = []
        for param, topic in zip(indexed, topics[1:]):
            raw = decode_hex(topic)
            if param.is_dynamic:
                # only the keccak hash of a dynamic value is stored in a topic
                topic_values.append(serialize_value(raw))
            else:
                value = abi_decode([param.canonical_type], raw)[0]
                topic_values.append(serialize_value(_format_value(param, value)))

        non_indexed = [p for p in event.inputs if not p.indexed]
        decoded_data = abi_decode([p.canonical_type for p in non_indexed], decode_hex(data))
        data_values = [
            serialize_value(_format_value(param, value))
            for param, value in zip(non_indexed, decoded_data, strict=True)
        ]
    except Exception as e:  # eth_abi raises several unrelated error types
        return Fallback(f"cannot decode {event.signature}: {e}")

    topic_iter, data_iter = iter(topic_values), iter(data_values)
    args = {}
    for index, param in enumerate(event.inputs):
        args[param.name or str(index)] = next(topic_iter) if param.indexed else next(data_iter)
    return Decoded(event.name, args)


def decode_function_call(abi: ContractAbi, tx_input: str, to: str | None) -> DecodedFunctionCall:
    """
    Decode transaction calldata.

    Parameters
    ----------
    abi : ContractAbi
        Contract ABI
    tx_input : str
        Hex encoded calldata
    to : str | None
        Transaction recipient, None for contract creation

    Returns
    -------
    DecodedFunctionCall
        ``Deployment`` for contract creation, the decoded call, or the raw
        selector with absent arguments when decoding fails
    """
    if to is None:
        return DecodedFunctionCall(function_name=DEPLOYMENT_FUNCTION_NAME, data=tx_input, args={})

    result = try_decode_function(abi, tx_input)
    if isinstance(result, Fallback):
        logger.debug(f"Failed to decode function data: {result.reason}")
        return DecodedFunctionCall(function_name=tx_input[:10], data=tx_input, args=None)
    return DecodedFunctionCall(function_name=result.name, data=tx_input, args=result.args)


def decode_log(abi: ContractAbi, topics: Sequence[str], data: str) -> DecodedLogEntry:
    """
    Decode a single event log.

    Parameters
    ----------
    abi : ContractAbi
        Contract ABI
    topics : Sequence[str]
        Hex encoded topics, event signature first
    data : str
        Hex encoded non-indexed data

    Returns
    -------
    DecodedLogEntry
        Decoded log, or ``Unknown Event`` with absent arguments
    """
    result = try_decode_log(abi, topics, data)
    if isinstance(result, Fallback):
        logger.debug(f"Failed to decode event log: {result.reason}")
        return DecodedLogEntry(event_name=UNKNOWN_EVENT_NAME, data=data, args=None)
    return DecodedLogEntry(event_name=result.name, data=data, args=result.args)
