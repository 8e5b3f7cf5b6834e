import json
import logging
import re
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import aiohttp

from blockchain.abi import parse_abi
from blockchain.known_contracts import detect_known_interfaces, find_known_contract
from blockchain.schemas import ContractDetails, KnownSource, SourceContent
from blockchain.services import ChainService
from core.environment.config import ChainConfig, ExplorerConfig, Settings
from core.exceptions import ABIFetchException
from core.redis.keys import contract_details_key
from core.redis.providers import CacheService

IGNORED_SOURCE_PATHS = ("metadata.json", "creator-tx-hash.txt", "immutable-references")

_CONTRACT_NAME_PATTERN = re.compile(r"(?:contract|abstract\s+contract|interface)\s+(\w+)(?:\s+is\s+[\w\s,]*)?\s*\{")


def grab_contract_name(content: str) -> str:
    """Name of the first contract, abstract contract or interface declared in a source."""
    match = _CONTRACT_NAME_PATTERN.search(content)
    return match.group(1) if match else ""


def parse_explorer_sources(source_code: str, contract_name: str) -> list[tuple[str, str]]:
    """
    Split an explorer ``SourceCode`` field into ``(path, content)`` pairs.

    Explorers return either a flat source, a JSON map of files, or a
    standard-json input wrapped in an extra pair of braces.

    Parameters
    ----------
    source_code : str
        ``SourceCode`` field of ``getsourcecode``
    contract_name : str
        ``ContractName`` field, used to name flat sources

    Returns
    -------
    list[tuple[str, str]]
        Source files
    """
    text = source_code.strip()
    if not text:
        return []
    if text.startswith("{{") and text.endswith("}}"):
        text = text[1:-1]
    if text.startswith("{"):
        try:
            payload = json.loads(text)
        except ValueError:
            return [(f"{contract_name}.sol", source_code)]
        files = payload.get("sources", payload) if isinstance(payload, dict) else None
        if not isinstance(files, dict):
            return [(f"{contract_name}.sol", source_code)]
        return [
            (path, entry.get("content", ""))
            for path, entry in files.items()
            if isinstance(entry, dict)
        ]
    return [(f"{contract_name}.sol", source_code)]


def refine_sources(sources: list[tuple[str, str]]) -> list[SourceContent | KnownSource]:
    """
    Keep only the sources worth explaining.

    Build artifacts are dropped and well-known library files are replaced by
    their one-line explanation.

    Parameters
    ----------
    sources : list[tuple[str, str]]
        Source files as ``(path, content)``

    Returns
    -------
    list[SourceContent | KnownSource]
        Refined sources in their original order
    """
    refined: list[SourceContent | KnownSource] = []
    for path, content in sources:
        if any(ignored in path for ignored in IGNORED_SOURCE_PATHS):
            continue
        known = find_known_contract(path)
        if known:
            refined.append(KnownSource(name=known.name, explanation=known.explanation))
        else:
            refined.append(SourceContent(name=grab_contract_name(content), content=content))
    return refined


@dataclass
class LoadedContract:
    abi: list[dict[str, Any]]
    name: str | None = None
    sources: list[tuple[str, str]] = field(default_factory=list)
    implementation: str | None = None


class ContractService:
    """
    Service discovering contract ABIs and sources.

    Loaders are tried in order (Sourcify, Etherscan, Blockscout) and the
    first one that returns an ABI wins. Proxies are followed to their
    implementation.

    Parameters
    ----------
    chain_service : ChainService
        Chain reader, used to resolve proxy implementations
    cache_service : CacheService
        Cache for discovered contract details
    settings : Settings
        Application settings
    logger : logging.Logger
        Logger instance
    """

    def __init__(
        self,
        chain_service: ChainService,
        cache_service: CacheService,
        settings: Settings,
        logger: logging.Logger
    ):
        self.chain = chain_service
        self.cache = cache_service
        self.settings = settings
        self.logger = logger

    async def get_contract(self, chain_id: str, contract_address: str) -> ContractDetails:
        """
        Get contract details from cache or discovery.

        Parameters
        ----------
        chain_id : str
            Chain id
        contract_address : str
            Contract address

        Returns
        -------
        ContractDetails
            ABI, name and sources
        """
        cache_key = contract_details_key(chain_id, contract_address)

        cached = await self.cache.get(cache_key)
        if cached:
            self.logger.info(f"Cache hit for key: {cache_key}")
            return ContractDetails.model_validate(cached)

        self.logger.info(f"Cache miss for key: {cache_key}")
        details = await self.fetch_contract(chain_id, contract_address)
        await self.cache.set(cache_key, details.model_dump(mode="json", by_alias=True, exclude_none=True))
        return details

    async def fetch_contract(self, chain_id: str, contract_address: str) -> ContractDetails:
        """
        Discover contract ABI and sources, following proxies.

        Parameters
        ----------
        chain_id : str
            Chain id
        contract_address : str
            Contract address

        Returns
        -------
        ContractDetails
            ABI, name and sources

        Raises
        ------
        ChainNotSupportedException
            If chain is not supported
        ABIFetchException
            If no loader knows the contract
        """
        chain = self.settings.get_chain_config(chain_id)

        loaded = await self._load(chain, contract_address)
        if loaded is None:
            raise ABIFetchException()

        impl_address = loaded.implementation or await self.chain.get_implementation_address(
            chain_id, contract_address
        )
        if impl_address and impl_address.lower() != contract_address.lower():
            self.logger.info(f"Contract {contract_address} is a proxy for {impl_address}")
            impl_loaded = await self._load(chain, impl_address)
            if impl_loaded is not None:
                loaded = impl_loaded
            else:
                self.logger.warning(f"Failed to fetch implementation ABI for {impl_address}")

        abi = parse_abi(loaded.abi)
        sources = refine_sources(loaded.sources)
        if not sources:
            sources = [
                KnownSource(name=known.name, explanation=known.explanation)
                for known in detect_known_interfaces(abi)
            ]

        self.logger.info(f"Retrieved contract details for {contract_address} on chain {chain_id}")
        return ContractDetails(abi=abi, name=loaded.name or None, sources=sources or None)

    async def _load(self, chain: ChainConfig, address: str) -> LoadedContract | None:
        loaders = [partial(self._fetch_from_sourcify, chain, address)]
        for explorer in (chain.etherscan, chain.blockscout):
            if explorer:
                loaders.append(partial(self._fetch_from_explorer, chain, explorer, address))

        for loader in loaders:
            try:
                loaded = await loader()
            except (aiohttp.ClientError, TimeoutError, ValueError) as e:
                self.logger.warning(f"ABI loader failed for {address}: {e}")
                continue
            if loaded and loaded.abi:
                return loaded
        return None

    async def _fetch_from_sourcify(self, chain: ChainConfig, address: str) -> LoadedContract | None:
        """
        Fetch ABI and sources from Sourcify.

        Parameters
        ----------
        chain : ChainConfig
            Chain configuration
        address : str
            Contract address

        Returns
        -------
        LoadedContract | None
            Loaded contract or None if not verified on Sourcify
        """
        url = f"{self.settings.sourcify_api_url}/v2/contract/{chain.chain_id}/{address}"
        params = {"fields": "abi,sources,compilation"}

        async with aiohttp.ClientSession() as session:
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    return None
                data = await response.json()

        if not isinstance(data, dict) or not isinstance(data.get("abi"), list):
            return None

        compilation = data.get("compilation")
        sources = data.get("sources")
        return LoadedContract(
            abi=data["abi"],
            name=compilation.get("name") if isinstance(compilation, dict) else None,
            sources=[
                (path, entry.get("content", ""))
                for path, entry in (sources.items() if isinstance(sources, dict) else [])
                if isinstance(entry, dict)
            ],
        )

    async def _fetch_from_explorer(
        self,
        chain: ChainConfig,
        explorer: ExplorerConfig,
        address: str
    ) -> LoadedContract | None:
        """
        Fetch ABI and sources from an Etherscan-compatible explorer.

        Parameters
        ----------
        chain : ChainConfig
            Chain configuration
        explorer : ExplorerConfig
            Explorer endpoint
        address : str
            Contract address

        Returns
        -------
        LoadedContract | None
            Loaded contract or None if the explorer has no verified ABI
        """
        params = {
            "chainid": chain.chain_id,
            "module": "contract",
            "action": "getsourcecode",
            "address": address,
        }
        if explorer.api_key:
            params["apikey"] = explorer.api_key

        async with aiohttp.ClientSession() as session:
            async with session.get(explorer.api_url, params=params) as response:
                if response.status != 200:
                    return None
                data = await response.json(content_type=None)

        if not isinstance(data, dict) or data.get("status") != "1":
            return None
        results = data.get("result")
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            return None

        result = results[0]
        try:
            abi = json.loads(result.get("ABI") or "")
        except (TypeError, ValueError):
            # unverified contracts report a plain message instead of an ABI
            return None
        if not isinstance(abi, list):
            return None

        name = result.get("ContractName") or None
        implementation = result.get("Implementation") if result.get("Proxy") == "1" else None
        return LoadedContract(
            abi=abi,
            name=name,
            sources=parse_explorer_sources(str(result.get("SourceCode") or ""), name or "Contract"),
            implementation=implementation or None,
        )
