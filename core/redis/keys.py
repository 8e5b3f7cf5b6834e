"""Cache keys for every cached resource.

Each resource kind has its own literal prefix, so keys of different kinds
never collide. Inputs are used verbatim; callers pass lowercase addresses
and hashes.
"""


def explain_contract_key(chain_id: str, contract_address: str) -> str:
    return f"contract_explain:{chain_id}:{contract_address}"


def contract_details_key(chain_id: str, contract_address: str) -> str:
    return f"contract_details:{chain_id}:{contract_address}"


def transaction_details_key(transaction_hash: str) -> str:
    return f"transaction_details:{transaction_hash}"


def transaction_explanation_key(transaction_hash: str) -> str:
    return f"transaction_explanation:{transaction_hash}"
