from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from blockchain.schemas import ContractRequest, GetTransactionRequest


class CamelModel(BaseModel):
    """Model exchanged with the LLM and clients using camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )


class ParameterExplanation(CamelModel):
    name: str
    type: str
    description: str


class ReturnExplanation(CamelModel):
    type: str
    description: str


class FunctionExplanation(CamelModel):
    """
    Explanation of one contract function.

    Attributes
    ----------
    signature : str
        Canonical signature, e.g. ``transfer(address,uint256)``
    name : str
        Function name
    description : str
        What the function does
    parameters : list[ParameterExplanation]
        Explained arguments
    returns : list[ReturnExplanation]
        Explained return values
    visibility : list[str]
        Visibility and mutability keywords
    payable : bool
        Whether the function accepts ETH
    modifiers : list[str]
        Modifiers with a short explanation each
    side_effects : list[str]
        State changes and external calls
    """
    signature: str
    name: str
    description: str
    parameters: list[ParameterExplanation]
    returns: list[ReturnExplanation]
    visibility: list[Literal["public", "external", "internal", "private", "pure", "view"]]
    payable: bool
    modifiers: list[str]
    side_effects: list[str]


class EventParameterExplanation(CamelModel):
    name: str
    type: str
    indexed: bool
    description: str
    significance: str


class EventExplanation(CamelModel):
    signature: str
    name: str
    description: str
    parameters: list[EventParameterExplanation]


class ExplainContractOutput(CamelModel):
    """
    Structured explanation of a contract.

    Attributes
    ----------
    overview : str
        Purpose, functionality and architecture of the contract
    functions : list[FunctionExplanation]
        One entry per function
    events : list[EventExplanation]
        One entry per event
    """
    overview: str
    functions: list[FunctionExplanation]
    events: list[EventExplanation]


class ValueAnalysis(CamelModel):
    name: str
    value: str
    analysis: str


class FunctionCallAnalysis(CamelModel):
    name: str
    description: str
    arguments: list[ValueAnalysis]


class EmittedEventAnalysis(CamelModel):
    name: str
    significance: str
    parameters: list[ValueAnalysis]


class TransferredValue(CamelModel):
    amount: str
    significance: str


class TransactionContext(CamelModel):
    block_number: int
    sender: str = Field(alias="from")
    recipient: str = Field(alias="to")


class TransactionAnalysis(CamelModel):
    function_call: FunctionCallAnalysis
    emitted_events: list[EmittedEventAnalysis]
    state_changes: list[str]
    value: TransferredValue
    context: TransactionContext
    security_analysis: str
    business_impact: str


class ExplainTransactionOutput(CamelModel):
    """
    Structured explanation of one transaction.

    Attributes
    ----------
    summary : str
        Two or three sentence summary
    details : TransactionAnalysis
        Technical breakdown
    """
    summary: str
    details: TransactionAnalysis


class ContractStreamRequest(ContractRequest):
    """
    Request schema for a streamed contract explanation.

    Attributes
    ----------
    session_id : str
        Caller session; one active stream is allowed per session
    """
    session_id: str = Field(..., min_length=1, description="Caller session id")

    @field_validator('session_id')
    @classmethod
    def check_session_id(cls, v: str) -> str:
        if ":" in v:
            raise ValueError('Session id must not contain ":"')
        return v


class TransactionStreamRequest(GetTransactionRequest):
    """
    Request schema for a streamed transaction explanation.

    Attributes
    ----------
    session_id : str
        Caller session; one active stream is allowed per session and transaction
    """
    session_id: str = Field(..., min_length=1, description="Caller session id")

    @field_validator('session_id')
    @classmethod
    def check_session_id(cls, v: str) -> str:
        if ":" in v:
            raise ValueError('Session id must not contain ":"')
        return v
