from dataclasses import dataclass, field
from typing import Iterable

from blockchain.abi import AbiItem, FunctionItem


@dataclass(frozen=True)
class KnownContract:
    """
    Library contract whose purpose is explained without its source.

    Attributes
    ----------
    name : str
        Contract name
    path : str
        Import path as it appears in verified sources
    explanation : str
        One-line explanation sent to the LLM instead of the source
    functions : frozenset[str]
        Function signatures an ABI must contain to match this interface
    """
    name: str
    path: str
    explanation: str
    functions: frozenset[str] = field(default_factory=frozenset)


_OZ = "@openzeppelin/contracts"

KNOWN_CONTRACTS = [
    KnownContract("AccessControl", f"{_OZ}/access/AccessControl.sol",
                  "Provides a role-based access control mechanism to restrict function calls based on assigned roles."),
    KnownContract("Ownable", f"{_OZ}/access/Ownable.sol",
                  "Implements a basic access control mechanism where an owner account is given exclusive control "
                  "over certain functions."),
    KnownContract("Ownable2Step", f"{_OZ}/access/Ownable2Step.sol",
                  "Facilitates a two-step process for transferring ownership to enhance security during ownership "
                  "changes."),
    KnownContract("Governor", f"{_OZ}/governance/Governor.sol",
                  "Serves as the base contract for building on-chain governance systems by managing proposal "
                  "creation, voting, and execution."),
    KnownContract("Proxy", f"{_OZ}/proxy/Proxy.sol",
                  "Abstract contract that delegates all calls to an implementation address."),
    KnownContract("TransparentUpgradeableProxy", f"{_OZ}/proxy/transparent/TransparentUpgradeableProxy.sol",
                  "Upgradeable proxy where the admin can only upgrade and every other caller is forwarded to the "
                  "implementation."),
    KnownContract("ERC1967Proxy", f"{_OZ}/proxy/ERC1967/ERC1967Proxy.sol",
                  "Upgradeable proxy storing its implementation address in the EIP-1967 storage slot."),
    KnownContract("BeaconProxy", f"{_OZ}/proxy/beacon/BeaconProxy.sol",
                  "Proxy whose implementation address is read from a beacon contract."),
    KnownContract("ReentrancyGuard", f"{_OZ}/security/ReentrancyGuard.sol",
                  "Prevents reentrant calls to functions marked nonReentrant."),
    KnownContract("Pausable", f"{_OZ}/security/Pausable.sol",
                  "Lets authorized accounts pause and unpause functions marked whenNotPaused."),
    KnownContract("ERC20", f"{_OZ}/token/ERC20/ERC20.sol",
                  "Standard ERC20 fungible token implementation with balances, allowances and transfers."),
    KnownContract("ERC20Burnable", f"{_OZ}/token/ERC20/extensions/ERC20Burnable.sol",
                  "Lets token holders destroy their own tokens or tokens they have an allowance for."),
    KnownContract("ERC20Permit", f"{_OZ}/token/ERC20/extensions/ERC20Permit.sol",
                  "Adds gasless approvals through EIP-2612 signed permits."),
    KnownContract("ERC20Votes", f"{_OZ}/token/ERC20/extensions/ERC20Votes.sol",
                  "Adds vote delegation and historical voting power checkpoints to an ERC20 token."),
    KnownContract("SafeERC20", f"{_OZ}/token/ERC20/utils/SafeERC20.sol",
                  "Wraps ERC20 calls so that tokens returning no value or false revert consistently."),
    KnownContract("ERC721", f"{_OZ}/token/ERC721/ERC721.sol",
                  "Standard ERC721 non-fungible token implementation with ownership and approvals."),
    KnownContract("ERC721Enumerable", f"{_OZ}/token/ERC721/extensions/ERC721Enumerable.sol",
                  "Adds on-chain enumeration of all token ids and of the token ids owned by each account."),
    KnownContract("ERC721URIStorage", f"{_OZ}/token/ERC721/extensions/ERC721URIStorage.sol",
                  "Stores a distinct metadata URI per token id."),
    KnownContract("ERC1155", f"{_OZ}/token/ERC1155/ERC1155.sol",
                  "Standard ERC1155 multi-token implementation supporting fungible and non-fungible ids."),
    KnownContract("Address", f"{_OZ}/utils/Address.sol",
                  "Helpers for address checks and low-level calls that bubble up revert reasons."),
    KnownContract("Context", f"{_OZ}/utils/Context.sol",
                  "Provides the current execution context (sender and calldata) for meta-transaction support."),
    KnownContract("Strings", f"{_OZ}/utils/Strings.sol",
                  "String conversion helpers for integers and addresses."),
    KnownContract("Math", f"{_OZ}/utils/math/Math.sol",
                  "Arithmetic helpers such as min, max, average and mulDiv."),
    KnownContract("EnumerableSet", f"{_OZ}/utils/structs/EnumerableSet.sol",
                  "Set data structures with constant-time membership checks and enumeration."),
    KnownContract("ERC165", f"{_OZ}/utils/introspection/ERC165.sol",
                  "Implements interface detection through supportsInterface."),
    KnownContract("ECDSA", f"{_OZ}/utils/cryptography/ECDSA.sol",
                  "Recovers signer addresses from ECDSA signatures."),
    KnownContract("EIP712", f"{_OZ}/utils/cryptography/EIP712.sol",
                  "Builds EIP-712 typed structured data hashes for signing."),
    KnownContract("MerkleProof", f"{_OZ}/utils/cryptography/MerkleProof.sol",
                  "Verifies Merkle tree inclusion proofs."),
]

KNOWN_INTERFACES = [
    KnownContract(
        "IERC20", f"{_OZ}/token/ERC20/IERC20.sol",
        "Interface of the ERC20 fungible token standard.",
        frozenset({
            "totalSupply()", "balanceOf(address)", "transfer(address,uint256)",
            "allowance(address,address)", "approve(address,uint256)",
            "transferFrom(address,address,uint256)",
        }),
    ),
    KnownContract(
        "IERC721", f"{_OZ}/token/ERC721/IERC721.sol",
        "Interface of the ERC721 non-fungible token standard.",
        frozenset({
            "balanceOf(address)", "ownerOf(uint256)", "safeTransferFrom(address,address,uint256)",
            "transferFrom(address,address,uint256)", "approve(address,uint256)",
            "setApprovalForAll(address,bool)", "getApproved(uint256)", "isApprovedForAll(address,address)",
        }),
    ),
    KnownContract(
        "IERC1155", f"{_OZ}/token/ERC1155/IERC1155.sol",
        "Interface of the ERC1155 multi-token standard.",
        frozenset({
            "balanceOf(address,uint256)", "balanceOfBatch(address[],uint256[])",
            "setApprovalForAll(address,bool)", "isApprovedForAll(address,address)",
            "safeTransferFrom(address,address,uint256,uint256,bytes)",
            "safeBatchTransferFrom(address,address,uint256[],uint256[],bytes)",
        }),
    ),
    KnownContract(
        "IERC4626", f"{_OZ}/interfaces/IERC4626.sol",
        "Interface of the ERC4626 tokenized vault standard.",
        frozenset({
            "asset()", "totalAssets()", "deposit(uint256,address)", "mint(uint256,address)",
            "withdraw(uint256,address,address)", "redeem(uint256,address,address)",
        }),
    ),
    KnownContract(
        "IERC2981", f"{_OZ}/interfaces/IERC2981.sol",
        "Interface of the NFT royalty standard.",
        frozenset({"royaltyInfo(uint256,uint256)"}),
    ),
    KnownContract(
        "IERC1271", f"{_OZ}/interfaces/IERC1271.sol",
        "Interface for contracts validating signatures on behalf of an account.",
        frozenset({"isValidSignature(bytes32,bytes)"}),
    ),
    KnownContract(
        "IAccessControl", f"{_OZ}/access/IAccessControl.sol",
        "Interface of role-based access control.",
        frozenset({
            "hasRole(bytes32,address)", "getRoleAdmin(bytes32)", "grantRole(bytes32,address)",
            "revokeRole(bytes32,address)", "renounceRole(bytes32,address)",
        }),
    ),
    KnownContract(
        "IERC165", f"{_OZ}/utils/introspection/IERC165.sol",
        "Interface of the ERC165 standard for interface detection.",
        frozenset({"supportsInterface(bytes4)"}),
    ),
]


def find_known_contract(path: str) -> KnownContract | None:
    """Match a source path against the known library contracts and interfaces."""
    for known in (*KNOWN_CONTRACTS, *KNOWN_INTERFACES):
        if known.path in path:
            return known
    return None


def detect_known_interfaces(abi: Iterable[AbiItem]) -> list[KnownContract]:
    """
    Find the known interfaces an ABI fully implements.

    Parameters
    ----------
    abi : Iterable[AbiItem]
        Contract ABI

    Returns
    -------
    list[KnownContract]
        Matching interfaces in declaration order
    """
    signatures = {item.signature for item in abi if isinstance(item, FunctionItem)}
    return [known for known in KNOWN_INTERFACES if known.functions <= signatures]
