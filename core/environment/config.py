import os
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.exceptions import ChainNotSupportedException


class ExplorerConfig(BaseModel):
    """
    Block explorer API endpoint.

    Attributes
    ----------
    api_url : str
        Explorer API base URL
    api_key : str
        Explorer API key (may be empty)
    """
    api_url: str
    api_key: str = ""


class ChainConfig(BaseModel):
    """
    Connection details for a supported chain.

    Attributes
    ----------
    chain_id : str
        Decimal chain id
    name : str
        Human readable chain name
    rpc_url : str
        JSON-RPC endpoint used for reads
    etherscan : ExplorerConfig | None
        Etherscan-compatible explorer
    blockscout : ExplorerConfig | None
        Blockscout explorer
    """
    chain_id: str
    name: str
    rpc_url: str
    etherscan: ExplorerConfig | None = None
    blockscout: ExplorerConfig | None = None


class Settings(BaseSettings):
    """
    Application settings using Pydantic Settings.

    Attributes
    ----------
    redis_host : str
        Redis host for caching
    redis_port : int
        Redis port
    redis_db : int
        Redis database number
    redis_password : str
        Redis password (optional)
    default_cache_time : int
        Default cache entry lifetime in seconds
    openrouter_api_key : str
        OpenRouter API key for the LLM
    openrouter_model_name : str
        Model used for structured generation
    openrouter_base_url : str
        OpenAI-compatible API base URL
    mainnet_rpc_url : str
        Ethereum mainnet RPC URL
    mainnet_etherscan_api_key : str
        Etherscan API key (optional)
    mainnet_blockscout_api_key : str
        Blockscout API key (optional)
    etherscan_api_url : str
        Etherscan v2 API URL
    sourcify_api_url : str
        Sourcify server URL
    """

    redis_host: str
    redis_port: int
    redis_db: int
    redis_password: str = ""
    default_cache_time: int = 60 * 60 * 24

    openrouter_api_key: str
    openrouter_model_name: str = "openai/gpt-4o-mini"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"

    mainnet_rpc_url: str = "https://eth.llamarpc.com"
    mainnet_etherscan_api_key: str = ""
    mainnet_blockscout_api_key: str = ""

    etherscan_api_url: str = "https://api.etherscan.io/v2/api"
    sourcify_api_url: str = "https://sourcify.dev/server"

    model_config = SettingsConfigDict(
        env_file=os.getenv("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def supported_chains(self) -> dict[str, ChainConfig]:
        """
        Chains the service can read from, keyed by decimal chain id.

        Returns
        -------
        dict[str, ChainConfig]
            Chain configurations
        """
        return {
            "1": ChainConfig(
                chain_id="1",
                name="mainnet",
                rpc_url=self.mainnet_rpc_url,
                etherscan=ExplorerConfig(
                    api_url=self.etherscan_api_url,
                    api_key=self.mainnet_etherscan_api_key
                ),
                blockscout=ExplorerConfig(
                    api_url="https://eth.blockscout.com/api",
                    api_key=self.mainnet_blockscout_api_key
                ),
            )
        }

    def get_chain_config(self, chain_id: str | int) -> ChainConfig:
        """
        Get configuration for specific chain.

        Parameters
        ----------
        chain_id : str | int
            Chain id

        Returns
        -------
        ChainConfig
            Chain configuration

        Raises
        ------
        ChainNotSupportedException
            If chain is not supported
        """
        chain = self.supported_chains.get(str(chain_id))
        if chain is None:
            raise ChainNotSupportedException()
        return chain
