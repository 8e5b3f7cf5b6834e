import json
import logging
from typing import Any, AsyncIterator, Callable, Generic, Protocol, TypeVar

from openai import AsyncOpenAI, OpenAIError
from openai.lib.streaming.chat import AsyncChatCompletionStream, AsyncChatCompletionStreamManager
from openai.types.chat import ParsedChatCompletion
from pydantic import BaseModel, ValidationError

from core.exceptions import GenerationException

T = TypeVar("T", bound=BaseModel)
T_co = TypeVar("T_co", covariant=True)


class GenerationStream(Protocol[T_co]):
    """Progressive generation: partial objects first, then one final value."""

    def partials(self) -> AsyncIterator[dict[str, Any]]: ...

    async def result(self) -> T_co: ...

    async def aclose(self) -> None: ...


def _parsed_output(completion: ParsedChatCompletion[T]) -> T:
    if not completion.choices:
        raise GenerationException("error.generation.empty")
    message = completion.choices[0].message
    if message.refusal:
        raise GenerationException("error.generation.refused")
    if message.parsed is None:
        raise GenerationException("error.generation.empty")
    return message.parsed


class OpenAIGenerationStream(Generic[T]):
    """
    Structured generation streamed from the chat completions API.

    The request is only sent once ``partials`` is iterated. Partial objects
    are the incrementally parsed JSON of the response so far.

    Parameters
    ----------
    open_stream : Callable[[], AsyncChatCompletionStreamManager[T]]
        Factory starting the streaming request
    logger : logging.Logger
        Logger instance
    """

    def __init__(
        self,
        open_stream: Callable[[], AsyncChatCompletionStreamManager[T]],
        logger: logging.Logger
    ):
        self._open_stream = open_stream
        self.logger = logger
        self._stream: AsyncChatCompletionStream[T] | None = None
        self._completion: ParsedChatCompletion[T] | None = None

    async def partials(self) -> AsyncIterator[dict[str, Any]]:
        try:
            async with self._open_stream() as stream:
                self._stream = stream
                async for event in stream:
                    if event.type == "content.delta" and isinstance(event.parsed, dict):
                        yield event.parsed
                self._completion = await stream.get_final_completion()
        except (OpenAIError, ValidationError) as e:
            self.logger.warning(f"Streamed generation failed: {e}")
            raise GenerationException() from e

    async def result(self) -> T:
        if self._completion is None:
            raise GenerationException("error.generation.incomplete")
        return _parsed_output(self._completion)

    async def aclose(self) -> None:
        if self._stream is not None:
            await self._stream.close()


class LLMService:
    """
    Structured generation through an OpenAI-compatible API (OpenRouter).

    Parameters
    ----------
    client : AsyncOpenAI
        API client
    model : str
        Model name
    logger : logging.Logger
        Logger instance
    """

    def __init__(self, client: AsyncOpenAI, model: str, logger: logging.Logger):
        self.client = client
        self.model = model
        self.logger = logger

    def _messages(self, system_prompt: str, payload: Any) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": json.dumps(payload)},
        ]

    async def generate(self, system_prompt: str, schema: type[T], payload: Any) -> T:
        """
        Generate a complete structured object.

        Parameters
        ----------
        system_prompt : str
            Instructions for the model
        schema : type[T]
            Pydantic model the output must satisfy
        payload : Any
            JSON-serializable input

        Returns
        -------
        T
            Parsed output

        Raises
        ------
        GenerationException
            On API errors, refusals or output not matching the schema
        """
        try:
            completion = await self.client.chat.completions.parse(
                model=self.model,
                messages=self._messages(system_prompt, payload),
                response_format=schema,
            )
        except (OpenAIError, ValidationError) as e:
            self.logger.warning(f"Generation of {schema.__name__} failed: {e}")
            raise GenerationException() from e

        return _parsed_output(completion)

    def stream(self, system_prompt: str, schema: type[T], payload: Any) -> OpenAIGenerationStream[T]:
        """
        Start a streamed structured generation.

        Parameters
        ----------
        system_prompt : str
            Instructions for the model
        schema : type[T]
            Pydantic model the output must satisfy
        payload : Any
            JSON-serializable input

        Returns
        -------
        OpenAIGenerationStream[T]
            Stream yielding partial objects, then the parsed output
        """
        messages = self._messages(system_prompt, payload)
        return OpenAIGenerationStream(
            lambda: self.client.chat.completions.stream(
                model=self.model,
                messages=messages,
                response_format=schema,
            ),
            self.logger,
        )
