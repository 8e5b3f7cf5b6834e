import logging
from typing import Annotated, Any, Iterable, Literal, Union

from eth_utils import event_signature_to_log_topic, function_signature_to_4byte_selector
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

logger = logging.getLogger("contract_explainer").getChild("abi")

_ABI_MODEL_CONFIG = ConfigDict(
    frozen=True,
    populate_by_name=True,
    serialize_by_alias=True,
    extra="ignore"
)


class AbiParameter(BaseModel):
    """
    Input or output parameter of an ABI entry.

    Attributes
    ----------
    name : str
        Parameter name, empty when the ABI omits it
    type : str
        Solidity type, e.g. ``uint256`` or ``tuple[]``
    indexed : bool
        Whether an event parameter is stored in a topic
    components : list[AbiParameter] | None
        Tuple members
    internal_type : str | None
        Compiler internal type
    """
    name: str = ""
    type: str
    indexed: bool = False
    components: list["AbiParameter"] | None = None
    internal_type: str | None = Field(default=None, alias="internalType")

    model_config = _ABI_MODEL_CONFIG

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        return v or ""

    @property
    def canonical_type(self) -> str:
        """Type string used in signatures, with tuples expanded."""
        if self.type.startswith("tuple"):
            inner = ",".join(c.canonical_type for c in self.components or [])
            return f"({inner}){self.type[len('tuple'):]}"
        return self.type

    @property
    def is_dynamic(self) -> bool:
        """Whether an indexed value of this type is stored as its hash."""
        return (
            self.type in ("string", "bytes")
            or self.type.endswith("]")
            or self.type.startswith("tuple")
        )


def _signature(name: str, inputs: Iterable[AbiParameter]) -> str:
    return f"{name}({','.join(p.canonical_type for p in inputs)})"


class FunctionItem(BaseModel):
    type: Literal["function"] = "function"
    name: str
    inputs: list[AbiParameter] = []
    outputs: list[AbiParameter] = []
    state_mutability: str | None = Field(default=None, alias="stateMutability")

    model_config = _ABI_MODEL_CONFIG

    @property
    def signature(self) -> str:
        return _signature(self.name, self.inputs)

    @property
    def selector(self) -> str:
        return "0x" + function_signature_to_4byte_selector(self.signature).hex()


class EventItem(BaseModel):
    type: Literal["event"] = "event"
    name: str
    inputs: list[AbiParameter] = []
    anonymous: bool = False

    model_config = _ABI_MODEL_CONFIG

    @property
    def signature(self) -> str:
        return _signature(self.name, self.inputs)

    @property
    def topic(self) -> str:
        return "0x" + event_signature_to_log_topic(self.signature).hex()


class ErrorItem(BaseModel):
    type: Literal["error"] = "error"
    name: str
    inputs: list[AbiParameter] = []

    model_config = _ABI_MODEL_CONFIG


class ConstructorItem(BaseModel):
    type: Literal["constructor"] = "constructor"
    inputs: list[AbiParameter] = []
    state_mutability: str | None = Field(default=None, alias="stateMutability")

    model_config = _ABI_MODEL_CONFIG


class FallbackItem(BaseModel):
    type: Literal["fallback"] = "fallback"
    state_mutability: str | None = Field(default=None, alias="stateMutability")

    model_config = _ABI_MODEL_CONFIG


class ReceiveItem(BaseModel):
    type: Literal["receive"] = "receive"
    state_mutability: str | None = Field(default=None, alias="stateMutability")

    model_config = _ABI_MODEL_CONFIG


AbiItem = Annotated[
    Union[FunctionItem, EventItem, ErrorItem, ConstructorItem, FallbackItem, ReceiveItem],
    Field(discriminator="type")
]

_abi_item_adapter: TypeAdapter[AbiItem] = TypeAdapter(AbiItem)


def parse_abi(raw_abi: Iterable[Any]) -> list[AbiItem]:
    """
    Validate raw ABI entries into typed items.

    Entries that do not validate are skipped, since ABIs coming from
    discovery services can be partial.

    Parameters
    ----------
    raw_abi : Iterable[Any]
        JSON ABI entries

    Returns
    -------
    list[AbiItem]
        Validated ABI items in their original order
    """
    items: list[AbiItem] = []
    for entry in raw_abi:
        if isinstance(entry, dict) and "type" not in entry:
            entry = {**entry, "type": "function"}
        try:
            items.append(_abi_item_adapter.validate_python(entry))
        except ValidationError as e:
            logger.warning(f"Skipping invalid ABI entry {entry!r}: {e.error_count()} errors")
    return items


class ContractAbi:
    """
    Validated ABI with lookup tables for decoding.

    Parameters
    ----------
    items : Iterable[AbiItem]
        Validated ABI items
    """

    def __init__(self, items: Iterable[AbiItem]):
        self.items: list[AbiItem] = list(items)
        self.functions: dict[str, FunctionItem] = {
            item.selector: item for item in self.items if isinstance(item, FunctionItem)
        }
        self.events: dict[str, EventItem] = {
            item.topic: item
            for item in self.items
            if isinstance(item, EventItem) and not item.anonymous
        }

    @classmethod
    def from_json(cls, raw_abi: Iterable[Any]) -> "ContractAbi":
        return cls(parse_abi(raw_abi))

    def to_json(self) -> list[dict[str, Any]]:
        return [_abi_item_adapter.dump_python(item, mode="json", by_alias=True, exclude_none=True) for item in self.items]

    def __len__(self) -> int:
        return len(self.items)
